"""Simple tests for the depends module."""

import pytest

from nfy.config import Config
from nfy.depends import depends


class SampleService:
    def __init__(self, name: str = "test") -> None:
        self.name = name


class TestDepends:
    @pytest.mark.asyncio
    async def test_set_get(self) -> None:
        service = SampleService(name="test_service")
        depends.set(SampleService, service)

        result = await depends.get(SampleService)

        assert result is service
        assert result.name == "test_service"

    def test_set_returns_instance(self) -> None:
        service = SampleService(name="returned")

        assert depends.set(SampleService, service) is service

    def test_set_without_instance(self) -> None:
        """Test set method without providing an instance."""
        created = depends.set(SampleService)

        assert isinstance(created, SampleService)
        assert depends.get_sync(SampleService) is created

    def test_config_is_registered(self) -> None:
        assert isinstance(depends.get_sync(Config), Config)
