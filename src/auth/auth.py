import os
import logging
import aiohttp
from typing import Dict, Optional

logger = logging.getLogger('modelmix.auth')


class BaseAuth():
    def __init__(self, async_requests_client: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the authentication service with an aiohttp ClientSession.

        Args:
            async_requests_client (aiohttp.ClientSession): Session used for requests
                to the identity service. One is created lazily when omitted.
        """
        self.async_requests_client = async_requests_client

    async def get_client(self):
        if not self.async_requests_client:
            self.async_requests_client = aiohttp.ClientSession()
        return self.async_requests_client

    def construct_headers(self, token: Optional[str] = None) -> Dict[str, str]:
        """
        Constructs the nessecary HTTP auth headers for a given auth method
        """
        raise NotImplementedError

    async def acheck_auth(self, token: Optional[str] = None) -> bool:
        raise NotImplementedError

    async def get_current_user(self, token: Optional[str] = None) -> Optional[dict]:
        """
        Retrieve the identity associated with the provided token.
        """
        raise NotImplementedError


class AuthConfig:
    # Registry of the authentication strategies the service accepts

    def __init__(self):
        self.auth_strategies: Dict[str, BaseAuth] = {}

    def register_auth_strategy(self, name: str, auth_strategy: BaseAuth):
        """
        Register a new authentication strategy.

        Args:
            name (str): The name of the authentication strategy.
            auth_strategy (BaseAuth): An instance of a class that inherits from BaseAuth.
        """
        if not isinstance(auth_strategy, BaseAuth):
            raise TypeError(f"{name} must be an instance of BaseAuth")
        self.auth_strategies[name] = auth_strategy

    def get_auth_strategy(self, name: str) -> BaseAuth:
        try:
            return self.auth_strategies[name]
        except KeyError:
            raise ValueError(f"No auth strategy registered under '{name}'")


class BearerTokenAuth(BaseAuth):
    """
    Validates bearer access tokens against a Supabase-compatible identity service.

    The service answers ``GET {AUTH_BASE_URL}/auth/v1/user`` with the user's
    ``id``, ``email`` and ``user_metadata`` when the token is valid.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, *args, **kwargs):
        super().__init__(*args, **kwargs)

        self.base_url = (base_url or os.getenv('AUTH_BASE_URL') or '').rstrip('/')
        if not self.base_url:
            raise ValueError('AUTH_BASE_URL not set in environment variables')

        self.api_key = api_key or os.getenv('AUTH_API_KEY')
        if not self.api_key:
            raise ValueError('AUTH_API_KEY not set in environment variables')

        self.current_user_url = f"{self.base_url}/auth/v1/user"

    def construct_headers(self, token: Optional[str] = None) -> Dict[str, str]:
        if not token:
            raise ValueError('Token is required')

        return {
            'Authorization': f'Bearer {token}',
            'apikey': self.api_key,
        }

    async def get_current_user(self, token: Optional[str] = None) -> Optional[dict]:
        """
        Retrieve the identity behind a bearer token.

        Args:
            token: The access token issued by the identity service

        Returns:
            A dict with ``id``, ``email`` and ``full_name``, or None if the
            token was rejected or the identity service could not be reached
        """
        headers = self.construct_headers(token)
        masked_token = f"{token[:10]}...{token[-5:]}" if len(token) > 15 else token[:5] + "..."
        logger.debug(f"Bearer token validation - URL: {self.current_user_url}, token (masked): {masked_token}")

        client = await self.get_client()
        try:
            async with client.get(self.current_user_url, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f'Error validating access token: {response.status} {error_text}')
                    return None
                response_data = await response.json()
        except aiohttp.ClientError as e:
            logger.error(f'Identity service unreachable: {e}')
            return None

        user_id = response_data.get('id')
        if not user_id:
            logger.error('Identity service returned a user without an id')
            return None

        metadata = response_data.get('user_metadata') or {}
        logger.info(f'Access token validated for user {user_id}')
        return {
            'id': user_id,
            'email': response_data.get('email') or '',
            'full_name': metadata.get('full_name') or metadata.get('name') or '',
        }

    async def acheck_auth(self, token: Optional[str] = None) -> bool:
        return await self.get_current_user(token) is not None
