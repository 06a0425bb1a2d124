#!/usr/bin/env python3
"""
Run one background stream job in-process and follow it by polling.

The job keeps streaming after create() returns; this script plays the part
of a client that checks in every half second and prints the new text.

Run:
    export OPENROUTER_API_KEY=sk-or-...
    python examples/background_chat.py "Explain SSE in two sentences"
"""

import asyncio
import os
import sys

from backstream import (
    Chat,
    InMemoryJobStore,
    JobStatus,
    StreamJobController,
    UpstreamClient,
    User,
    get_settings,
)

MODEL = os.getenv("OPENROUTER_MODEL") or "openai/gpt-4o-mini"


async def main(prompt: str) -> None:
    settings = get_settings()
    store = InMemoryJobStore()
    await store.put_user(User(id="demo-user"))
    await store.put_chat(Chat(id="demo-chat", user_id="demo-user"))

    upstream = UpstreamClient(
        base_url=settings.upstream_base_url,
        referer=settings.site_url,
        title=settings.app_title,
    )
    controller = StreamJobController(store, upstream, settings=settings)

    job_id = await controller.create(
        "demo-chat",
        "demo-user",
        "demo-msg-1",
        MODEL,
        settings.shared_provider,
        [{"role": "user", "content": prompt}],
    )
    print(f"job {job_id} admitted")

    shown = 0
    while True:
        view = await controller.query(job_id, "demo-user")
        if view is None:
            break
        if len(view.content) > shown:
            print(view.content[shown:], end="", flush=True)
            shown = len(view.content)
        if view.status.is_terminal:
            break
        await asyncio.sleep(0.5)

    print()
    if view is not None and view.status == JobStatus.ERROR:
        print(f"job failed: {view.error}")

    status = await controller.quota.status("demo-user")
    print(f"shared-tier spend today: {status.used_cents:.4f} / {status.limit_cents} cents")

    await controller.drain()
    await upstream.aclose()


if __name__ == "__main__":
    asyncio.run(main(" ".join(sys.argv[1:]) or "Say hello in five words."))
