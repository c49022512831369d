import pytest

from fakes import FakePageSource, filler
from rankpilot.search.errors import RateLimitError, SearchRequestError, TransientNetworkError
from rankpilot.search.resolver import RankResolver
from rankpilot.utils.retry import backoff_delay

TARGET = "82345671234"


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_found_on_first_page_uses_one_call():
    source = FakePageSource({"shoes": filler(6) + [TARGET] + filler(300)})
    resolution = await RankResolver(source).resolve("shoes", TARGET)
    assert resolution.rank == 7
    assert resolution.api_calls == 1
    assert source.calls == [("shoes", 1)]


@pytest.mark.asyncio
async def test_found_on_third_page_uses_exactly_three_calls():
    source = FakePageSource({"shoes": filler(234) + [TARGET] + filler(500)})
    resolution = await RankResolver(source).resolve("shoes", TARGET)
    assert resolution.rank == 235
    assert resolution.api_calls == 3
    assert [start for _, start in source.calls] == [1, 101, 201]


@pytest.mark.asyncio
async def test_stops_at_max_position():
    source = FakePageSource({"shoes": filler(1000) + [TARGET]})
    resolution = await RankResolver(source).resolve("shoes", TARGET, max_position=300, page_size=100)
    assert resolution.rank is None
    assert resolution.api_calls == 3


@pytest.mark.asyncio
async def test_short_page_means_exhausted():
    source = FakePageSource({"shoes": filler(150)})
    resolution = await RankResolver(source).resolve("shoes", TARGET)
    assert resolution.rank is None
    assert resolution.api_calls == 2


@pytest.mark.asyncio
async def test_empty_result_is_not_an_error():
    source = FakePageSource({})
    resolution = await RankResolver(source).resolve("nothing here", TARGET)
    assert resolution.rank is None
    assert resolution.api_calls == 1


@pytest.mark.asyncio
async def test_rate_limit_retried_with_exponential_backoff():
    sleep = SleepRecorder()
    source = FakePageSource(
        {"shoes": [TARGET]},
        errors=[RateLimitError("slow down", status_code=429), RateLimitError("slow down", status_code=429)],
    )
    resolution = await RankResolver(source, sleep=sleep).resolve("shoes", TARGET)
    assert resolution.rank == 1
    assert resolution.api_calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_server_error_retried_with_linear_backoff():
    sleep = SleepRecorder()
    source = FakePageSource(
        {"shoes": [TARGET]},
        errors=[TransientNetworkError("boom", status_code=502), TransientNetworkError("boom", status_code=503)],
    )
    resolution = await RankResolver(source, sleep=sleep).resolve("shoes", TARGET)
    assert resolution.rank == 1
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_client_error_is_fatal():
    sleep = SleepRecorder()
    source = FakePageSource({"shoes": [TARGET]}, errors=[SearchRequestError("bad query", status_code=400)])
    with pytest.raises(SearchRequestError):
        await RankResolver(source, sleep=sleep).resolve("shoes", TARGET)
    assert len(source.calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    sleep = SleepRecorder()
    source = FakePageSource({"shoes": [TARGET]}, errors=[RateLimitError("slow down")] * 5)
    with pytest.raises(RateLimitError):
        await RankResolver(source, max_attempts=3, sleep=sleep).resolve("shoes", TARGET)
    assert len(source.calls) == 3
    assert sleep.delays == [1.0, 2.0]


def test_backoff_delay():
    assert [backoff_delay(RateLimitError("x"), n) for n in range(3)] == [1.0, 2.0, 4.0]
    assert [backoff_delay(TransientNetworkError("x"), n) for n in range(3)] == [1.0, 2.0, 3.0]
