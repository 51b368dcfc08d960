#!/usr/bin/env python3
import sys

import httpx

from client import AmicaClient, AudioPlayer, ChatFailed
from config import AMICA_STORAGE, API_URL
from conversations import ConversationStore, LocalStorage, Preferences
from logging_config import setup_logging


HELP = """Commands:
  /new            start a new conversation
  /list           list conversations
  /open <id>      switch to a conversation
  /delete <id>    delete a conversation
  /theme          toggle light/dark
  /voice          toggle spoken replies
  /quit           exit"""


def print_conversation(store: ConversationStore) -> None:
    conv = store.current
    if conv is None:
        print("(no conversation selected)")
        return
    print(f"== {conv.title} [{conv.id}]")
    for m in conv.messages:
        who = "tu" if m.role == "user" else "AMICA"
        print(f"[{m.timestamp.astimezone():%H:%M}] {who}: {m.content}")


def handle_command(line: str, store: ConversationStore, prefs: Preferences, state: dict) -> bool:
    """Run a slash command; returns False when the session should end."""
    cmd, _, arg = line.partition(" ")
    arg = arg.strip()
    if cmd == "/quit":
        return False
    if cmd == "/new":
        conv = store.create()
        print(f"new conversation {conv.id}")
    elif cmd == "/list":
        for c in store.conversations:
            mark = "*" if c.id == store.current_id else " "
            print(f"{mark} {c.id}  {c.title}  ({len(c.messages)} messages)")
    elif cmd == "/open":
        try:
            store.select(arg)
        except KeyError:
            print(f"no conversation {arg!r}")
        else:
            print_conversation(store)
    elif cmd == "/delete":
        try:
            store.delete(arg)
        except KeyError:
            print(f"no conversation {arg!r}")
        else:
            print(f"deleted {arg}; current: {store.current_id or '-'}")
    elif cmd == "/theme":
        prefs.theme = "light" if prefs.theme == "dark" else "dark"
        print(f"theme: {prefs.theme}")
    elif cmd == "/voice":
        state["voice"] = not state["voice"]
        print(f"voice: {'on' if state['voice'] else 'off'}")
    else:
        print(HELP)
    return True


def main():
    setup_logging("WARNING")
    storage = LocalStorage(AMICA_STORAGE)
    store = ConversationStore(storage)
    prefs = Preferences(storage)
    amica = AmicaClient(store, base_url=API_URL)
    player = AudioPlayer()
    state = {"voice": False}

    if len(sys.argv) >= 2:
        try:
            reply = amica.send(" ".join(sys.argv[1:]))
            print(reply.content)
        finally:
            amica.close()
        return

    print(f"AMICA @ {API_URL} - /help for commands")
    print_conversation(store)
    try:
        while True:
            try:
                line = input("> ").strip()
            except EOFError:
                break
            if not line:
                continue
            if line.startswith("/"):
                if not handle_command(line, store, prefs, state):
                    break
                continue
            # Never talk over the previous answer
            player.stop()
            reply = amica.send(line)
            tag = " [web]" if amica.last_web_access else ""
            print(f"AMICA{tag}: {reply.content}")
            if state["voice"] and player.available:
                try:
                    player.play(amica.speak(reply.content))
                    player.wait()
                except (ChatFailed, httpx.HTTPError) as e:
                    print(f"(voice unavailable: {e})")
    except KeyboardInterrupt:
        pass
    finally:
        player.stop()
        amica.close()


if __name__ == "__main__":
    main()
