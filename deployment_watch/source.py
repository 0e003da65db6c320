"""HTTP client for the remote platform's deployment endpoints.

Read-only methods (snapshots, events, deployment metadata) back the poller
and the consumer. ``set_scale`` is the single mutation, used by the CLI
scale command before verification starts.
"""

import json
from urllib.parse import quote

import httpx

from .errors import DeploymentNotFound, ScaleRejected, SourceUnavailable
from .logger import get_logger
from .models import BuildEvent, ClientConfig, Deployment, RegionObservation

logger = get_logger("source")


class HttpStatusSource:
    def __init__(self, config=None, transport=None):
        self.config = config or ClientConfig()
        self._transport = transport
        self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    def _get_client(self):
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.config.token:
                headers["Authorization"] = f"Bearer {self.config.token}"
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url,
                headers=headers,
                timeout=httpx.Timeout(self.config.request_timeout_s, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _params(self, **params):
        if self.config.team_id:
            params["teamId"] = self.config.team_id
        return params

    @staticmethod
    def _path(template, deployment_id):
        return template.format(id=quote(str(deployment_id), safe=""))

    async def _request(self, method, path, deployment_id, **kwargs):
        client = self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
            if response.status_code == 404:
                raise DeploymentNotFound(deployment_id)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise SourceUnavailable(f"{method} {path} returned {e.response.status_code}", cause=e) from e
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise SourceUnavailable(f"{method} {path} failed: {e}", cause=e) from e

    async def get_deployment(self, deployment_id):
        path = self._path("/v3/now/deployments/{id}", deployment_id)
        response = await self._request("GET", path, deployment_id, params=self._params())
        return Deployment.from_wire(response.json())

    async def get_snapshot(self, deployment_id):
        """Instance counts for every region in one round trip"""
        path = self._path("/v3/now/deployments/{id}/instances", deployment_id)
        response = await self._request("GET", path, deployment_id, params=self._params(init=1))
        snapshot = {}
        for region_id, entry in response.json().items():
            instances = (entry or {}).get("instances") or []
            snapshot[region_id] = RegionObservation(region_id, len(instances))
        return snapshot

    async def set_scale(self, deployment_id, constraints):
        path = self._path("/v3/now/deployments/{id}/instances", deployment_id)
        body = {region_id: c.to_wire() for region_id, c in constraints.items()}
        logger.debug(f"scale args: {json.dumps(body)}")
        client = self._get_client()
        try:
            response = await client.patch(path, json=body, params=self._params())
        except httpx.RequestError as e:
            raise SourceUnavailable(f"PATCH {path} failed: {e}", cause=e) from e

        if response.status_code == 400:
            error = _error_body(response)
            raise ScaleRejected(error.get("code"), limit=error.get("max"))
        if response.status_code == 404:
            raise DeploymentNotFound(deployment_id)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(f"PATCH {path} returned {response.status_code}", cause=e) from e

    async def stream_events(self, deployment_id, follow=True):
        """Lazily yield BuildEvents in order; with follow, block for new ones"""
        path = self._path("/v1/now/deployments/{id}/events", deployment_id)
        params = self._params(direction="forward")
        if follow:
            params["follow"] = 1
        client = self._get_client()
        kwargs = {"params": params}
        if follow:
            # a live tail may stay silent longer than any read timeout
            kwargs["timeout"] = httpx.Timeout(None, connect=10.0)
        index = 0
        try:
            async with client.stream("GET", path, **kwargs) as response:
                if response.status_code == 404:
                    raise DeploymentNotFound(deployment_id)
                response.raise_for_status()
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    data = json.loads(line)
                    # Non-follow requests may answer with a plain JSON array
                    for item in data if isinstance(data, list) else [data]:
                        if not isinstance(item, dict):
                            raise SourceUnavailable(f"Malformed event after {index} events: {item!r}")
                        yield BuildEvent.from_wire(item, index)
                        index += 1
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(f"GET {path} returned {e.response.status_code}", cause=e) from e
        except httpx.RequestError as e:
            logger.error(f"Event stream for {deployment_id} broke after {index} events: {e}")
            raise SourceUnavailable(f"Event stream failed: {e}", cause=e) from e
        except json.JSONDecodeError as e:
            raise SourceUnavailable(f"Malformed event after {index} events: {e}", cause=e) from e


def _error_body(response):
    try:
        data = response.json()
    except ValueError:
        return {}
    return data.get("error", data) if isinstance(data, dict) else {}
