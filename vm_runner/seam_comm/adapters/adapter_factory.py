"""
Adapter Factory

Creates client adapter instances from configuration, so callers choose a
transport by name.
"""

from typing import Any, Dict

from vm_runner.seam_comm.adapters.adapter_interface import ClientAdapterInterface
from vm_runner.seam_comm.adapters.zeromq.client import ZeroMQClient


class AdapterType:
    """Adapter type constants"""
    ZEROMQ = "zeromq"


class AdapterFactory:
    """Adapter factory, used to create communication adapter instances"""

    @staticmethod
    def create_client(adapter_type: str, config: Dict[str, Any] = None) -> ClientAdapterInterface:
        """Create client adapter

        Args:
            adapter_type: Adapter type, such as "zeromq"
            config: Adapter configuration parameters

        Returns:
            ClientAdapterInterface: Client adapter instance

        Raises:
            ValueError: Invalid adapter type
        """
        if config is None:
            config = {}

        if adapter_type.lower() == AdapterType.ZEROMQ:
            return ZeroMQClient(
                server_address=config.get("server_address", "tcp://localhost:5555"),
                timeout_ms=config.get("timeout_ms", 5000),
            )
        else:
            raise ValueError(f"Invalid adapter type: {adapter_type}")
