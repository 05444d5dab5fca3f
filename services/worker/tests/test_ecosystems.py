"""生态实现测试：验证版本解析、命令构建与注册中心查询。"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from analysis_worker.domain.ecosystems.registry import EcosystemRegistry
from analysis_worker.domain.errors import ResolutionError, UnsupportedEcosystemError
from analysis_worker.domain.models import Package
from analysis_worker.infra.registry.client import RegistryClient


class _FetcherStub:
    """按 URL 返回预设 JSON 并记录请求。"""
    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses
        self.urls: list[str] = []

    def get_json(self, url: str) -> Any:
        self.urls.append(url)
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.mark.parametrize(
    ("ecosystem", "package_name", "url", "payload", "expected"),
    [
        ("npm", "left-pad", "https://registry.npmjs.org/left-pad", {"dist-tags": {"latest": "1.3.0"}}, "1.3.0"),
        ("npm", "@babel/core", "https://registry.npmjs.org/@babel%2Fcore", {"dist-tags": {"latest": "7.24.0"}}, "7.24.0"),
        ("pypi", "requests", "https://pypi.org/pypi/requests/json", {"info": {"version": "2.32.3"}}, "2.32.3"),
        ("rubygems", "rails", "https://rubygems.org/api/v1/versions/rails/latest.json", {"version": "7.1.3"}, "7.1.3"),
        (
            "packagist",
            "monolog/monolog",
            "https://repo.packagist.org/p2/monolog/monolog.json",
            {"packages": {"monolog/monolog": [{"version": "3.5.0"}, {"version": "3.4.0"}]}},
            "3.5.0",
        ),
        (
            "crates.io",
            "serde",
            "https://crates.io/api/v1/crates/serde",
            {"crate": {"max_stable_version": "1.0.197", "max_version": "1.0.198-rc1"}},
            "1.0.197",
        ),
    ],
)
def test_latest_resolves_from_registry(
    ecosystem: str, package_name: str, url: str, payload: Any, expected: str
) -> None:
    fetcher = _FetcherStub({url: payload})
    package = EcosystemRegistry(fetcher).get(ecosystem).latest(package_name)

    assert package == Package(ecosystem=ecosystem, name=package_name, version=expected)
    assert fetcher.urls == [url]


@pytest.mark.parametrize(
    "response",
    [
        {"version": "unknown"},
        {},
        httpx.ConnectError("connection refused"),
    ],
)
def test_latest_failure_is_resolution_error(response: Any) -> None:
    fetcher = _FetcherStub({"https://rubygems.org/api/v1/versions/ghost/latest.json": response})
    with pytest.raises(ResolutionError):
        EcosystemRegistry(fetcher).get("rubygems").latest("ghost")


def test_command_shapes() -> None:
    npm = EcosystemRegistry(_FetcherStub({})).get("npm")

    assert npm.command_for(Package("npm", "left-pad", "1.0.0"), "install") == [
        "/usr/local/bin/analyze.js",
        "--version",
        "1.0.0",
        "install",
        "left-pad",
    ]
    assert npm.command_for(Package("npm", "left-pad", "", local_path="/local/pkg.tgz"), "import") == [
        "/usr/local/bin/analyze.js",
        "--local",
        "/local/pkg.tgz",
        "import",
        "left-pad",
    ]
    assert npm.command_for(Package("npm", "left-pad", ""), "install") == [
        "/usr/local/bin/analyze.js",
        "install",
        "left-pad",
    ]


def test_default_phase_list() -> None:
    registry = EcosystemRegistry(_FetcherStub({}))
    for name in registry.names():
        assert registry.get(name).phase_list() == ("install", "import")


def test_unsupported_ecosystem_raises_key_error() -> None:
    registry = EcosystemRegistry(_FetcherStub({}))
    assert registry.names() == ["npm", "pypi", "rubygems", "packagist", "crates.io"]
    with pytest.raises(UnsupportedEcosystemError):
        registry.get("maven")
    with pytest.raises(KeyError):
        registry.get("")


def test_registry_client_parses_json() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=json.dumps({"info": {"version": "1.0"}}).encode())

    client = RegistryClient(transport=httpx.MockTransport(_handler))
    try:
        assert client.get_json("https://pypi.org/pypi/demo/json") == {"info": {"version": "1.0"}}
    finally:
        client.close()
    assert seen[0].headers["Accept"] == "application/json"


def test_registry_client_http_error_propagates_and_logs(caplog: pytest.LogCaptureFixture) -> None:
    client = RegistryClient(transport=httpx.MockTransport(lambda _request: httpx.Response(404)))
    with caplog.at_level("ERROR"):
        with pytest.raises(httpx.HTTPStatusError):
            client.get_json("https://registry.npmjs.org/ghost")
    client.close()

    record = next(item for item in caplog.records if item.message == "registry request failed")
    assert record.status_code == 404
    assert record.external_service == "registry.npmjs.org"


def test_registry_client_rejects_use_after_close() -> None:
    client = RegistryClient(transport=httpx.MockTransport(lambda _request: httpx.Response(200, json={})))
    client.close()
    client.close()
    with pytest.raises(RuntimeError):
        client.get_json("https://pypi.org/pypi/demo/json")
