"""Tests for the gateway handle (igdmap/upnp/gateway.py).

Covers:
- Ready and unavailable resolution outcomes and their callbacks
- NotReadyError for operations before readiness
- Gateway.connect and HTTP client ownership
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from igdmap.exceptions import DeviceUnavailableError, NotReadyError
from igdmap.upnp.description import GatewayInfo
from igdmap.upnp.gateway import Gateway, GatewayState
from igdmap.upnp.http import HttpClient, HttpResponse
from igdmap.upnp.interfaces import NetworkInterface

pytestmark = [pytest.mark.unit, pytest.mark.network]

URL = "http://192.168.1.1:5000/rootDesc.xml"
INFO = GatewayInfo(
    service_type="urn:schemas-upnp-org:service:WANIPConnection:1",
    control_url="http://192.168.1.1:5000/ctl/IPConn",
    scpd_url="http://192.168.1.1:5000/WANIPCn.xml",
)


class TestResolution:
    """Tests for gateway resolution."""

    @pytest.mark.asyncio
    async def test_ready(self, interface):
        """Test that a usable description makes the gateway ready."""
        gateway = Gateway(URL, interface, http=HttpClient())
        fired = []
        gateway.add_ready_callback(fired.append)

        with patch("igdmap.upnp.gateway.resolve_gateway_info", AsyncMock(return_value=INFO)) as resolve:
            result = await gateway.wait_ready()

        assert result is gateway
        assert gateway.state is GatewayState.READY
        assert gateway.ready
        assert gateway.info == INFO
        assert fired == [gateway]
        assert gateway.mappings.interface == interface
        resolve.assert_awaited_once_with(gateway.http, URL, gateway.services)

    @pytest.mark.asyncio
    async def test_unavailable(self, interface):
        """Test that a failed resolution is delivered through wait_ready and callbacks."""
        gateway = Gateway(URL, interface, http=HttpClient())
        failures = []
        gateway.add_unavailable_callback(lambda gw, err: failures.append((gw, err)))
        error = DeviceUnavailableError("No accepted WAN connection service")

        with patch("igdmap.upnp.gateway.resolve_gateway_info", AsyncMock(side_effect=error)):
            with pytest.raises(DeviceUnavailableError):
                await gateway.wait_ready()

        assert gateway.state is GatewayState.UNAVAILABLE
        assert failures == [(gateway, error)]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, interface):
        gateway = Gateway(URL, interface, http=HttpClient())

        with patch("igdmap.upnp.gateway.resolve_gateway_info", AsyncMock(return_value=INFO)) as resolve:
            first = gateway.start()
            second = gateway.start()
            await gateway.wait_ready()

        assert first is second
        resolve.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self, interface):
        """Test that coroutine callbacks complete before wait_ready returns."""
        gateway = Gateway(URL, interface, http=HttpClient())
        seen = []

        async def on_ready(gw):
            seen.append(gw.info)

        gateway.add_ready_callback(on_ready)

        with patch("igdmap.upnp.gateway.resolve_gateway_info", AsyncMock(return_value=INFO)):
            await gateway.wait_ready()

        assert seen == [INFO]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_block_ready(self, interface):
        gateway = Gateway(URL, interface, http=HttpClient())

        def broken(_gw):
            msg = "boom"
            raise RuntimeError(msg)

        gateway.add_ready_callback(broken)

        with patch("igdmap.upnp.gateway.resolve_gateway_info", AsyncMock(return_value=INFO)):
            assert await gateway.wait_ready() is gateway

    @pytest.mark.asyncio
    async def test_structured_service_type_unavailable(self, interface):
        """Test that a serviceType holding child elements ends resolution as unavailable."""
        description = (
            '<root xmlns="urn:schemas-upnp-org:device-1-0"><device><serviceList><service>'
            "<serviceType><x>1</x></serviceType>"
            "<controlURL>/ctl</controlURL><SCPDURL>/scpd.xml</SCPDURL>"
            "</service></serviceList></device></root>"
        )
        http = MagicMock()
        http.get = AsyncMock(return_value=HttpResponse(200, description))
        gateway = Gateway(URL, interface, http=http)
        failures = []
        gateway.add_unavailable_callback(lambda _gw, err: failures.append(err))

        with pytest.raises(DeviceUnavailableError):
            await gateway.wait_ready()

        assert gateway.state is GatewayState.UNAVAILABLE
        assert len(failures) == 1

    def test_default_services(self, interface):
        gateway = Gateway(URL, interface, http=HttpClient())

        assert gateway.services == (
            "urn:schemas-upnp-org:service:WANIPConnection:1",
            "urn:schemas-upnp-org:service:WANPPPConnection:1",
        )


class TestNotReady:
    """Tests for operations issued before readiness."""

    @pytest.mark.asyncio
    async def test_operations_before_ready(self, interface):
        gateway = Gateway(URL, interface, http=HttpClient())

        with pytest.raises(NotReadyError):
            await gateway.get_mappings()
        with pytest.raises(NotReadyError):
            await gateway.add_mapping(7700, 7700)
        with pytest.raises(NotReadyError):
            await gateway.delete_mapping(7700, 7700)
        with pytest.raises(NotReadyError):
            await gateway.get_external_ip()
        with pytest.raises(NotReadyError):
            gateway.iter_mappings()

    @pytest.mark.asyncio
    async def test_operations_on_unavailable_gateway(self, interface):
        gateway = Gateway(URL, interface, http=HttpClient())
        error = DeviceUnavailableError("HTTP 404")

        with patch("igdmap.upnp.gateway.resolve_gateway_info", AsyncMock(side_effect=error)):
            with pytest.raises(DeviceUnavailableError):
                await gateway.wait_ready()

        with pytest.raises(NotReadyError):
            await gateway.get_external_ip()


class TestConnect:
    """Tests for Gateway.connect and close."""

    @pytest.mark.asyncio
    async def test_connect_picks_local_address(self):
        """Test that connect derives the interface from the route to the URL host."""
        with patch(
            "igdmap.upnp.gateway.resolve_gateway_info", AsyncMock(return_value=INFO)
        ), patch(
            "igdmap.upnp.gateway.local_address_for", return_value="192.168.1.10"
        ) as local_address:
            gateway = await Gateway.connect(URL)

        local_address.assert_called_once_with("192.168.1.1")
        assert gateway.interface == NetworkInterface(name="", address="192.168.1.10")
        assert gateway.ready
        await gateway.close()

    @pytest.mark.asyncio
    async def test_connect_unavailable_closes_owned_client(self, interface):
        error = DeviceUnavailableError("HTTP 500")
        with patch(
            "igdmap.upnp.gateway.resolve_gateway_info", AsyncMock(side_effect=error)
        ), patch.object(HttpClient, "close", AsyncMock()) as close:
            with pytest.raises(DeviceUnavailableError):
                await Gateway.connect(URL, interface)

        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shared_client_not_closed(self, interface):
        http = HttpClient()
        http.close = AsyncMock()
        gateway = Gateway(URL, interface, http=http)

        await gateway.close()

        http.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connect_without_route(self):
        """Test that a failed route lookup is reported as an unavailable device."""
        with patch(
            "igdmap.upnp.gateway.local_address_for",
            side_effect=OSError("Network is unreachable"),
        ), patch("igdmap.upnp.gateway.resolve_gateway_info", AsyncMock()) as resolve:
            with pytest.raises(DeviceUnavailableError, match="Network is unreachable"):
                await Gateway.connect(URL)

        resolve.assert_not_awaited()
