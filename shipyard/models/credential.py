"""
Credential Model
================
Opaque (principal, token) pair used once per run to authenticate to the
registry. The token is a SecretStr: repr, str and model_dump never reveal it.
Credentials are never persisted and never attached to a RunResult.
"""
from pydantic import BaseModel, ConfigDict, SecretStr


class Credential(BaseModel):
    model_config = ConfigDict(frozen=True)

    principal: str
    token: SecretStr

    def reveal(self) -> str:
        """Plain token, for handing to the registry login call only."""
        return self.token.get_secret_value()
