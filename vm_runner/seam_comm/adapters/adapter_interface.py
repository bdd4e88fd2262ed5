"""
Communication Adapter Interface

Defines the interface every RPC client adapter implements, so the job server
client does not depend on the transport underneath.
"""

import abc
from typing import Any, Dict


class ClientAdapterInterface(abc.ABC):
    """Client adapter interface, defines methods all client adapters must implement"""

    @abc.abstractmethod
    async def call(self, method: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
        """Send an RPC request and wait for the response

        Args:
            method: Method name to call
            params: Method parameters

        Returns:
            Dict: The JSON-RPC response object, including any "error" member

        Raises:
            TimeoutError: Request timed out
            ConnectionError: Connection failed
            ValueError: Invalid response
        """
        pass

    @abc.abstractmethod
    def close(self) -> None:
        """Close the connection and release resources"""
        pass
