"""
Session gate: decides whether a client sees the sign-in form or the board.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from board import PipelineBoard
from identity import AuthClient, IdentityError
from models import User

logger = logging.getLogger(__name__)

PASSWORD_MISMATCH = "Passwords do not match."


class GateState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class SessionGate:
    def __init__(self, auth: AuthClient, board_factory: Callable[[str], PipelineBoard]):
        self.auth = auth
        self.board_factory = board_factory
        self.state = GateState.LOADING
        self.user: Optional[User] = None
        self.board: Optional[PipelineBoard] = None
        self.editor = None
        self.auth_error: Optional[str] = None
        self.loading = False
        self._unsubscribe = None

    def mount(self):
        if self._unsubscribe is None:
            self._unsubscribe = self.auth.on_auth_state_changed(self._on_auth_state)
        return self

    def unmount(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._close_board()

    def _on_auth_state(self, user: Optional[User]):
        self.user = user
        if user is None:
            self.state = GateState.UNAUTHENTICATED
            self._close_board()
            return
        self.state = GateState.AUTHENTICATED
        if self.board is None:
            self.board = self.board_factory(user.id)
            self.board.open()

    def _close_board(self):
        if self.board is not None:
            self.board.close()
            self.board = None
        self.editor = None

    # ----- credential form -----
    def sign_in(self, email: str, password: str) -> bool:
        self.loading = True
        self.auth_error = None
        try:
            self.auth.sign_in_with_email_and_password(email, password)
            return True
        except IdentityError as e:
            self.auth_error = str(e)
            return False
        finally:
            self.loading = False

    def sign_up(self, first_name: str, last_name: str, email: str,
                password: str, confirm_password: str) -> bool:
        self.loading = True
        self.auth_error = None
        try:
            if password != confirm_password:
                self.auth_error = PASSWORD_MISMATCH
                return False
            self.auth.create_user_with_email_and_password(email, password)
            self.user = self.auth.update_profile(f"{first_name} {last_name}")
            return True
        except IdentityError as e:
            self.auth_error = str(e)
            return False
        finally:
            self.loading = False

    def sign_out(self):
        self.auth.sign_out()
