"""
Endpoint registry backed by the ``APIS`` bucket.
"""

from pathlib import Path
from typing import Iterable, List, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from shared.errors import EndpointNotFoundError, ValidationError
from shared.logging import get_logger
from ..storage import APIS_BUCKET, KeyValueStore
from .models import Endpoint


DEFAULT_SEEDS = (
    Endpoint(
        id="a",
        url="https://alpha-api-nightly.mol.ai",
        address="FMYHLHBSJJMJZNPVUOKDCUSFOPQAGPBSPOPMFVBGXUUDFPEWPXREZFQKGKSNHZWDMODRDYWIXQT9CLVBXGPANCSYBW",
    ),
    Endpoint(
        id="b",
        url="https://google.com",
        address="FMYHLHBSJJMJZNPVUOKDCUSFOPQAGPBSPOPMFVBGXUUDFPEWPXREZFQKGKSNHZWDMODRDYWIXQT9CLVBXGPANCSYBW",
    ),
)

_seed_list = TypeAdapter(List[Endpoint])


def load_seed_file(path: Union[str, Path]) -> List[Endpoint]:
    """Read a JSON array of endpoint records."""
    try:
        return _seed_list.validate_json(Path(path).read_bytes())
    except (OSError, PydanticValidationError) as exc:
        raise ValidationError("Invalid endpoint seed file", details={"path": str(path), "error": str(exc)}) from exc


class EndpointRegistry:
    """Resolve logical endpoint ids to upstream records."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.logger = get_logger("proxy.endpoint_registry")

    async def lookup(self, endpoint_id: str) -> Endpoint:
        """Return the endpoint stored under ``endpoint_id``.

        Raises EndpointNotFoundError for unknown ids and for records that
        no longer decode.
        """
        raw = await self.store.get(APIS_BUCKET, endpoint_id)
        if raw is None:
            raise EndpointNotFoundError(endpoint_id)

        try:
            endpoint = Endpoint.decode(raw)
        except PydanticValidationError as exc:
            self.logger.error("Corrupt endpoint record", endpoint_id=endpoint_id, error=str(exc))
            raise EndpointNotFoundError(endpoint_id, "Endpoint record is malformed") from exc

        self.logger.debug("Endpoint resolved", endpoint_id=endpoint_id, url=endpoint.url)
        return endpoint

    async def register(self, endpoint: Endpoint) -> Endpoint:
        """Write ``endpoint``, overwriting any record with the same id."""
        await self.store.put(APIS_BUCKET, endpoint.id, endpoint.encode())
        self.logger.info("Endpoint registered", endpoint_id=endpoint.id, url=endpoint.url)
        return endpoint

    async def list_endpoints(self) -> List[Endpoint]:
        """Return all decodable endpoints ordered by id."""
        endpoints = []
        for endpoint_id in await self.store.keys(APIS_BUCKET):
            try:
                endpoints.append(await self.lookup(endpoint_id))
            except EndpointNotFoundError:
                continue
        return endpoints

    async def seed(self, endpoints: Iterable[Endpoint] = DEFAULT_SEEDS) -> int:
        """Write the built-in records at startup."""
        count = 0
        for endpoint in endpoints:
            self.logger.info("Seeding endpoint", endpoint_id=endpoint.id, url=endpoint.url)
            await self.register(endpoint)
            count += 1
        return count

