"""Tests for caller token authentication."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from skillswap_rtc.api import CallerAuth
from skillswap_rtc.core import Unauthenticated


class TestCallerAuth:
    """Test JWT issue/verify."""

    def test_requires_secret(self):
        with pytest.raises(ValueError):
            CallerAuth('')

    def test_round_trip(self, auth):
        token = auth.issue_token('T')

        assert auth.verify_token(token) == 'T'

    def test_extra_claims(self, auth):
        token = auth.issue_token('L', extra_claims={'role': 'learner'})

        claims = jwt.decode(token, auth.secret_key, algorithms=['HS256'])
        assert claims['role'] == 'learner'
        assert claims['sub'] == 'L'

    def test_wrong_secret_rejected(self, auth):
        token = CallerAuth(auth.secret_key + '-other').issue_token('T')

        with pytest.raises(Unauthenticated):
            auth.verify_token(token)

    def test_expired_token(self, auth):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {'sub': 'T', 'iat': now - timedelta(hours=2), 'exp': now - timedelta(hours=1)},
            auth.secret_key,
            algorithm='HS256',
        )

        with pytest.raises(Unauthenticated, match='expired'):
            auth.verify_token(token)

    def test_missing_subject(self, auth):
        token = jwt.encode({'name': 'nobody'}, auth.secret_key, algorithm='HS256')

        with pytest.raises(Unauthenticated):
            auth.verify_token(token)

    def test_garbage_token(self, auth):
        with pytest.raises(Unauthenticated):
            auth.verify_token('not-a-jwt')

    def test_auth_headers(self):
        assert CallerAuth.auth_headers('abc') == {'Authorization': 'Bearer abc'}


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
