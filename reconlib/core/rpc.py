import requests
from requests.auth import HTTPDigestAuth
from typing import Dict, Optional

from reconlib.config import get_int
from reconlib.exceptions import RemoteCallError
from reconlib.utils.console import print_debug


class RpcConnection:
    """JSON-RPC connection to a wallet RPC server"""

    def __init__(self, uri: str, username: Optional[str] = None, password: Optional[str] = None,
                 timeout: Optional[int] = None):
        self.uri = uri.rstrip('/')
        self.session = requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        if username:
            self.session.auth = HTTPDigestAuth(username, password or "")
        self.timeout = timeout or get_int("RECONLIB_RPC_TIMEOUT", 120)

    def call(self, method: str, params: Optional[Dict] = None) -> Dict:
        """
        Invoke a wallet RPC method and return its result object.

        Parameters whose value is None are not sent. Raises RemoteCallError
        with the server's error code if the call fails.
        """
        payload = {"jsonrpc": "2.0", "id": "0", "method": method}
        if params:
            cleaned = {key: val for key, val in params.items() if val is not None}
            if cleaned:
                payload["params"] = cleaned

        print_debug(f"DEBUG: wallet rpc call {method}")
        try:
            response = self.session.post(f'{self.uri}/json_rpc', json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RemoteCallError(f"Cannot reach wallet RPC at {self.uri}: {e}", method=method) from e

        if response.status_code != 200:
            raise RemoteCallError(f"HTTP error {response.status_code}: {response.text}", method=method)

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteCallError(f"Invalid JSON in response: {e}", method=method) from e

        error = data.get("error")
        if error:
            raise RemoteCallError(error.get("message", "Unknown error"), code=error.get("code"), method=method)
        return data.get("result") or {}

    def close(self) -> None:
        self.session.close()
