"""
Example: Many sessions at once, and a streaming session.

Runs a batch of independent conversations on an AgentPool, then streams a
reply word by word through a StreamingSession on the same pool.
"""

import threading

from conductor import Agent, AgentPool, ScriptedProvider, StreamingSession
from conductor.items import Role
from conductor.providers import text_response


def echo(messages, tools, settings):
    """Scripted model: repeat the user's message back."""
    user = [m for m in messages if m.role is Role.USER][-1]
    return text_response(f"You said: {user.content}")


def main():
    agent = Agent(name="Echo", instructions="Repeat what the user says.")

    with AgentPool(ScriptedProvider(echo), workers=4, backlog=16, on_full="block") as pool:
        handles = [pool.submit(f"message {i}", agent) for i in range(10)]
        done, pending = AgentPool.wait(handles, timeout=30)
        for handle in done:
            print(handle.task_id, handle.result().final_output)
        print(f"Pool stats: {pool.stats()}")

        finished = threading.Event()
        session = StreamingSession(pool, agent)
        session.on("chunk", lambda payload: print(payload["delta"], end="", flush=True))
        session.on("stream_end", lambda payload: finished.set())
        session.on("error", lambda payload: finished.set())

        with session:
            session.send("streaming works word by word")
            finished.wait(30)
        print(f"\nSession stats: {session.stats()}")


if __name__ == "__main__":
    main()
