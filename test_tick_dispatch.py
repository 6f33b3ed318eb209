import asyncio
import queue
import threading
import time

from prometheus_client import REGISTRY
import pytest

from core_config import DispatchConfig
from core_models import Tick
from services.tick_channel import LoopQueueSink, TickChannel
from services.tick_dispatch import StrategyWorkerRegistry


def _tick(symbol: str, price: float = 100.0, trade_id: int = 1) -> Tick:
    return Tick(symbol=symbol, price=price, qty=0.5, ts=1_000, trade_id=trade_id)


def _drain(q: queue.Queue) -> list:
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


def test_dispatch_isolation_between_symbols():
    reg = StrategyWorkerRegistry()
    q_btc, q_eth = queue.Queue(), queue.Queue()
    reg.register("w-btc", "BTCUSDT", q_btc)
    reg.register("w-eth", "ETHUSDT", q_eth)

    assert reg.dispatch(_tick("BTCUSDT")) == 1
    assert q_btc.qsize() == 1
    assert q_eth.qsize() == 0


def test_symbol_is_case_normalized():
    reg = StrategyWorkerRegistry()
    q = queue.Queue()
    reg.register("w1", " btcusdt ", q)

    assert reg.dispatch(_tick("BtcUsdt")) == 1
    assert reg.worker_ids_for_symbol("btcusdt") == ["w1"]
    assert reg.symbol_for_worker("w1") == "BTCUSDT"
    assert q.get_nowait().symbol == "BtcUsdt"


def test_dispatch_is_deterministic_per_worker():
    reg = StrategyWorkerRegistry()
    queues = {wid: queue.Queue() for wid in ("b", "a", "c")}
    for wid, q in queues.items():
        reg.register(wid, "BTCUSDT", q)

    ticks = [_tick("BTCUSDT", price=100.0 + i, trade_id=i) for i in range(20)]
    for t in ticks:
        assert reg.dispatch(t) == 3

    for q in queues.values():
        assert [t.trade_id for t in _drain(q)] == list(range(20))
    assert reg.worker_ids_for_symbol("BTCUSDT") == ["a", "b", "c"]


def test_unregister_removes_worker_and_prunes_symbol():
    reg = StrategyWorkerRegistry()
    q = queue.Queue()
    reg.register("w1", "BTCUSDT", q)
    reg.unregister("w1")

    assert reg.dispatch(_tick("BTCUSDT")) == 0
    assert q.empty()
    assert reg.worker_ids_for_symbol("BTCUSDT") == []
    assert reg.symbols() == []
    assert "w1" not in reg
    assert len(reg) == 0


def test_unregister_unknown_worker_is_noop():
    reg = StrategyWorkerRegistry()
    reg.register("w1", "BTCUSDT", queue.Queue())
    reg.unregister("missing")
    assert len(reg) == 1


def test_reregister_moves_worker_to_new_symbol():
    reg = StrategyWorkerRegistry()
    q = queue.Queue()
    reg.register("w1", "BTCUSDT", q)
    reg.register("w1", "ETHUSDT", q)

    assert reg.worker_ids_for_symbol("BTCUSDT") == []
    assert reg.worker_ids_for_symbol("ETHUSDT") == ["w1"]
    assert reg.symbols() == ["ETHUSDT"]
    assert reg.dispatch(_tick("BTCUSDT")) == 0
    assert reg.dispatch(_tick("ETHUSDT")) == 1
    assert len(reg) == 1


def test_register_is_idempotent():
    reg = StrategyWorkerRegistry()
    q = queue.Queue()
    reg.register("w1", "BTCUSDT", q)
    reg.register("w1", "BTCUSDT", q)

    assert reg.dispatch(_tick("BTCUSDT")) == 1
    assert q.qsize() == 1


def test_full_inbox_drops_without_blocking_others():
    reg = StrategyWorkerRegistry()
    slow = queue.Queue(maxsize=1)
    fast = queue.Queue()
    reg.register("slow", "BTCUSDT", slow)
    reg.register("fast", "BTCUSDT", fast)

    start = time.monotonic()
    delivered = [reg.dispatch(_tick("BTCUSDT", trade_id=i)) for i in range(5)]
    elapsed = time.monotonic() - start

    assert delivered == [2, 1, 1, 1, 1]
    assert slow.qsize() == 1
    assert slow.get_nowait().trade_id == 0
    assert fast.qsize() == 5
    assert elapsed < 1.0


def test_asyncio_queue_endpoint_overflow_is_dropped():
    reg = StrategyWorkerRegistry()
    aq: asyncio.Queue = asyncio.Queue(maxsize=1)
    reg.register("w1", "BTCUSDT", aq)

    assert reg.dispatch(_tick("BTCUSDT", trade_id=1)) == 1
    assert reg.dispatch(_tick("BTCUSDT", trade_id=2)) == 0
    assert aq.qsize() == 1
    assert aq.get_nowait().trade_id == 1


class _BrokenSink:
    def put_nowait(self, item):
        raise RuntimeError("inbox torn down")


def test_failing_inbox_does_not_starve_other_workers():
    reg = StrategyWorkerRegistry()
    good = queue.Queue()
    reg.register("a-broken", "BTCUSDT", _BrokenSink())
    reg.register("b-good", "BTCUSDT", good)

    assert reg.dispatch(_tick("BTCUSDT", trade_id=7)) == 1
    assert good.get_nowait().trade_id == 7


def _loop_in_thread():
    loop = asyncio.new_event_loop()
    t = threading.Thread(target=loop.run_forever, daemon=True)
    t.start()
    return loop, t


def _stop_loop(loop, t):
    loop.call_soon_threadsafe(loop.stop)
    t.join(timeout=5.0)
    loop.close()


def test_loop_queue_sink_wakes_consumer_on_another_thread():
    loop, t = _loop_in_thread()
    try:

        async def make_queue():
            return asyncio.Queue(maxsize=4)

        aq = asyncio.run_coroutine_threadsafe(make_queue(), loop).result(timeout=5.0)
        sink = LoopQueueSink(aq, loop)

        async def consume():
            return await asyncio.wait_for(aq.get(), timeout=5.0)

        pending = asyncio.run_coroutine_threadsafe(consume(), loop)
        time.sleep(0.05)

        reg = StrategyWorkerRegistry()
        reg.register("w1", "BTCUSDT", sink)
        start = time.monotonic()
        assert reg.dispatch(_tick("BTCUSDT", trade_id=11)) == 1
        got = pending.result(timeout=5.0)

        assert got.trade_id == 11
        assert time.monotonic() - start < 1.0
    finally:
        _stop_loop(loop, t)


def test_loop_queue_sink_counts_overflow_on_the_loop():
    loop, t = _loop_in_thread()
    try:

        async def make_queue():
            return asyncio.Queue(maxsize=1)

        aq = asyncio.run_coroutine_threadsafe(make_queue(), loop).result(timeout=5.0)
        sink = LoopQueueSink(aq, loop)
        sink.put_nowait(_tick("BTCUSDT", trade_id=1))
        sink.put_nowait(_tick("BTCUSDT", trade_id=2))

        async def qsize():
            return aq.qsize()

        assert asyncio.run_coroutine_threadsafe(qsize(), loop).result(timeout=5.0) == 1
        assert sink.dropped == 1
    finally:
        _stop_loop(loop, t)


def test_loop_queue_sink_on_closed_loop_is_dropped():
    loop = asyncio.new_event_loop()
    loop.close()
    sink = LoopQueueSink(asyncio.Queue(), loop)
    reg = StrategyWorkerRegistry()
    reg.register("w1", "BTCUSDT", sink)

    assert reg.dispatch(_tick("BTCUSDT")) == 0
    assert sink.dropped == 1

def test_concurrent_dispatch_and_registration():
    reg = StrategyWorkerRegistry()
    stable = queue.Queue()
    reg.register("stable", "BTCUSDT", stable)
    stop = threading.Event()

    def churn():
        i = 0
        while not stop.is_set():
            wid = f"tmp-{i % 4}"
            reg.register(wid, "BTCUSDT", queue.Queue())
            reg.unregister(wid)
            i += 1

    t = threading.Thread(target=churn)
    t.start()
    try:
        for i in range(500):
            reg.dispatch(_tick("BTCUSDT", trade_id=i))
    finally:
        stop.set()
        t.join()

    assert [x.trade_id for x in _drain(stable)] == list(range(500))
    assert reg.worker_ids_for_symbol("BTCUSDT") == ["stable"]


# --- TickChannel ---


def test_channel_drop_newest_raises_full():
    ch = TickChannel(queue_size=2, drop_policy="newest")
    ch.put_nowait(1)
    ch.put_nowait(2)
    with pytest.raises(queue.Full):
        ch.put_nowait(3)
    assert ch.drain() == [1, 2]
    assert ch.dropped == 1


def test_channel_drop_oldest_evicts_head():
    ch = TickChannel(queue_size=2, drop_policy="oldest")
    for i in range(4):
        ch.put_nowait(i)
    assert ch.drain() == [2, 3]
    assert ch.dropped == 2


def test_channel_from_config_accepts_legacy_policy_name():
    ch = TickChannel.from_config(DispatchConfig(queue_size=1, drop_policy="drop_oldest"))
    ch.put_nowait("a")
    ch.put_nowait("b")
    assert ch.depth == 1
    assert ch.get_nowait() == "b"


def test_channel_invalid_policy():
    with pytest.raises(ValueError):
        TickChannel(queue_size=1, drop_policy="sometimes")


def test_channel_get_times_out_and_wakes_on_close():
    ch = TickChannel(queue_size=4)
    assert ch.get(timeout=0.01) is None

    results = []
    t = threading.Thread(target=lambda: results.append(ch.get(timeout=5.0)))
    t.start()
    ch.close()
    t.join(timeout=5.0)
    assert results == [None]
    assert ch.closed
    with pytest.raises(queue.Full):
        ch.put_nowait("late")
    assert not ch.offer("late")


def test_closed_channel_drop_is_counted_in_metric():
    before = REGISTRY.get_sample_value("tick_channel_dropped_total") or 0.0
    ch = TickChannel(queue_size=4)
    ch.close()
    reg = StrategyWorkerRegistry()
    reg.register("w1", "BTCUSDT", ch)

    assert reg.dispatch(_tick("BTCUSDT")) == 0
    assert ch.dropped == 1
    assert REGISTRY.get_sample_value("tick_channel_dropped_total") == before + 1


def test_channel_as_registry_endpoint():
    reg = StrategyWorkerRegistry()
    with TickChannel(queue_size=1) as ch:
        reg.register("w1", "ETHUSDT", ch)
        assert reg.dispatch(_tick("ETHUSDT", trade_id=1)) == 1
        assert reg.dispatch(_tick("ETHUSDT", trade_id=2)) == 0
        assert ch.get(timeout=0.1).trade_id == 1
    assert ch.closed
