import asyncio


async def wait_for_shutdown(shutdown: asyncio.Event, seconds: float) -> bool:
    """Sleep for ``seconds`` unless shutdown is requested first.

    Returns:
        True if shutdown was requested, False if the full delay elapsed.
    """
    if shutdown.is_set():
        return True
    if seconds <= 0:
        # Yield to the event loop even without a delay
        await asyncio.sleep(0)
        return shutdown.is_set()

    try:
        await asyncio.wait_for(shutdown.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True
