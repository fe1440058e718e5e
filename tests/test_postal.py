import asyncio
import time

import httpx
import pytest

from storefront.core.config import Settings
from storefront.services import postal


def _config(**overrides) -> Settings:
    return Settings(postal_lookup_enabled=True, **overrides)


def test_normalize_and_format() -> None:
    assert postal.normalize_postal_code(" 01310-100 ") == "01310100"
    assert postal.is_valid_postal_code("01310-100")
    assert not postal.is_valid_postal_code("0131010")
    assert postal.format_postal_code("01310100") == "01310-100"


@pytest.mark.parametrize(
    ("postal_code", "region"),
    [
        ("01310-100", "SP"),
        ("20040-020", "RJ"),
        ("30130-010", "MG"),
        ("69301-000", "RR"),
        ("70040-010", "DF"),
        ("90010-000", "RS"),
        ("00000-000", None),
        ("123", None),
    ],
)
def test_approximate_region(postal_code: str, region: str | None) -> None:
    assert postal.approximate_region(postal_code) == region


def test_viacep_success_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    async def fake_fetch(base_url: str, postal_code: str, *, timeout: float) -> dict:
        calls.append(postal_code)
        return {"cep": "01310-100", "uf": "sp", "localidade": "São Paulo"}

    monkeypatch.setattr(postal, "_fetch_viacep", fake_fetch)
    resolver = postal.ViaCepResolver(_config())
    first = asyncio.run(resolver.resolve("01310-100"))
    second = asyncio.run(resolver.resolve("01310100"))
    assert first.region_code == "SP"
    assert first.city == "São Paulo"
    assert first.source == postal.VIACEP_SOURCE
    assert first.approximate is False
    assert second == first
    assert calls == ["01310100"]


def test_viacep_timeout_falls_back_to_table(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    async def fake_fetch(base_url: str, postal_code: str, *, timeout: float) -> dict:
        calls.append(postal_code)
        raise httpx.ReadTimeout("timed out")

    monkeypatch.setattr(postal, "_fetch_viacep", fake_fetch)
    resolver = postal.ViaCepResolver(_config())
    region = asyncio.run(resolver.resolve("20040020"))
    assert region.region_code == "RJ"
    assert region.approximate is True
    assert region.source == postal.TABLE_SOURCE
    assert asyncio.run(resolver.resolve("20040020")) == region
    assert len(calls) == 1


def test_fallback_caching_can_be_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    async def fake_fetch(base_url: str, postal_code: str, *, timeout: float) -> dict:
        calls.append(postal_code)
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(postal, "_fetch_viacep", fake_fetch)
    resolver = postal.ViaCepResolver(_config(postal_lookup_failure_ttl_seconds=0))
    asyncio.run(resolver.resolve("20040020"))
    asyncio.run(resolver.resolve("20040020"))
    assert len(calls) == 2


def test_concurrent_lookups_during_outage_do_not_queue(monkeypatch: pytest.MonkeyPatch) -> None:
    async def slow_timeout(base_url: str, postal_code: str, *, timeout: float) -> dict:
        await asyncio.sleep(0.3)
        raise httpx.ReadTimeout("timed out")

    monkeypatch.setattr(postal, "_fetch_viacep", slow_timeout)
    resolver = postal.ViaCepResolver(_config())
    ceps = ["01310100", "20040020", "30130010", "40010000", "80010000", "90010000"]

    async def _run() -> tuple[float, list[postal.ResolvedRegion]]:
        started = time.perf_counter()
        regions = await asyncio.gather(*(resolver.resolve(cep) for cep in ceps))
        return time.perf_counter() - started, list(regions)

    elapsed, regions = asyncio.run(_run())
    assert elapsed < 1.0
    assert all(region.approximate for region in regions)
    assert [region.region_code for region in regions] == ["SP", "RJ", "MG", "BA", "PR", "RS"]


def test_concurrent_lookups_of_one_cep_share_a_request(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    async def fake_fetch(base_url: str, postal_code: str, *, timeout: float) -> dict:
        calls.append(postal_code)
        await asyncio.sleep(0.05)
        return {"uf": "SP"}

    monkeypatch.setattr(postal, "_fetch_viacep", fake_fetch)
    resolver = postal.ViaCepResolver(_config())

    async def _run() -> list[postal.ResolvedRegion]:
        return list(await asyncio.gather(*(resolver.resolve("01310-100") for _ in range(6))))

    regions = asyncio.run(_run())
    assert calls == ["01310100"]
    assert {region.region_code for region in regions} == {"SP"}


def test_viacep_unknown_cep_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_fetch(base_url: str, postal_code: str, *, timeout: float) -> dict:
        return {"erro": True}

    monkeypatch.setattr(postal, "_fetch_viacep", fake_fetch)
    region = asyncio.run(postal.ViaCepResolver(_config()).resolve("90010000"))
    assert region.region_code == "RS"
    assert region.approximate is True


def test_viacep_passes_configured_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    async def fake_fetch(base_url: str, postal_code: str, *, timeout: float) -> dict:
        seen.update(base_url=base_url, timeout=timeout)
        return {"uf": "MG"}

    monkeypatch.setattr(postal, "_fetch_viacep", fake_fetch)
    config = _config(postal_lookup_timeout_seconds=0.25, postal_lookup_url="https://cep.example/ws")
    asyncio.run(postal.ViaCepResolver(config).resolve("30130010"))
    assert seen == {"base_url": "https://cep.example/ws", "timeout": 0.25}


def test_fetch_viacep_uses_httpx(monkeypatch: pytest.MonkeyPatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/ws/01310100/json/"
        return httpx.Response(200, json={"uf": "SP"})

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        kwargs["transport"] = transport
        return real_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
    payload = asyncio.run(postal._fetch_viacep("https://viacep.com.br/ws/", "01310100", timeout=0.5))
    assert payload == {"uf": "SP"}


def test_get_resolver_respects_setting() -> None:
    assert isinstance(postal.get_resolver(Settings(postal_lookup_enabled=False)), postal.TableResolver)
    assert isinstance(postal.get_resolver(_config()), postal.ViaCepResolver)
