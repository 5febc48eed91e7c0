"""
This module tracks who is signed in to RehabHub.

It defines `AuthState`, which is responsible for:
- Signing users in and out through the gateway and loading their profile.
- Observing the gateway's auth-state changes.
- Holding the "creating user" flag: while an operator creates an account for someone
  else, the provider briefly reports the new account signing in and out. Those
  notifications are ignored so the operator stays signed in.
"""
# rehabhub/auth.py

import logging

from rehabhub.models import Result

logger = logging.getLogger(__name__)


class AuthState:
    """Current user and profile for one RehabHub client."""

    def __init__(self, gateway):
        """Subscribes to the gateway's auth-state changes.

        Args:
            gateway (DocumentGateway): The gateway providing authentication.
        """
        self._gateway = gateway
        self.user = None
        self.profile = None
        self.is_creating_user = False
        self._unsubscribe = gateway.on_auth_state_change(self.handle_auth_state_change)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def role(self):
        return (self.profile or {}).get('role')

    @property
    def uid(self):
        return (self.user or {}).get('uid')

    def set_creating_user(self, is_creating: bool) -> None:
        self.is_creating_user = is_creating

    def handle_auth_state_change(self, user) -> None:
        """Applies an auth-state notification from the gateway.

        Args:
            user (dict or None): The signed-in user, or None after a sign-out.
        """
        if self.is_creating_user:
            logger.debug("Ignoring auth state change during user creation")
            return
        if user is None:
            self.user = None
            self.profile = None
            return
        self.user = user
        profile = self._gateway.read('users', user['uid'])
        self.profile = profile.data if profile.success else None

    def login(self, email, password) -> Result:
        """Signs a user in.

        Args:
            email (str): Account email.
            password (str): Plaintext password.

        Returns:
            Result: `data` is the user's profile on success.
        """
        result = self._gateway.sign_in(email, password)
        if not result.success:
            return Result.fail(result.error)
        # The listener has already run unless a creation was in flight.
        if self.user is None or self.user.get('uid') != result.user['uid']:
            self.user = result.user
            profile = self._gateway.read('users', result.user['uid'])
            self.profile = profile.data if profile.success else None
        return Result.ok(id=self.uid, data=self.profile)

    def logout(self) -> Result:
        result = self._gateway.sign_out()
        self.user = None
        self.profile = None
        return Result(result.success, error=result.error)

    def close(self) -> None:
        self._unsubscribe()
