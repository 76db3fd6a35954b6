from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AmazonSettings(BaseSettings):
    """
    SP-API application credentials and marketplace defaults.

    Env vars use the AMAZON_ prefix (AMAZON_LWA_APP_ID, ...). The bare
    LWA_APP_ID / LWA_CLIENT_SECRET / REFRESH_TOKEN names are accepted too.

    Per-seller refresh tokens live in `credentials`, a JSON object mapping
    credential refs to tokens:
        AMAZON_CREDENTIALS='{"seller-1": "Atzr|..."}'
    """

    model_config = SettingsConfigDict(
        env_prefix="AMAZON_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    lwa_app_id: str = Field(default="", validation_alias=AliasChoices("AMAZON_LWA_APP_ID", "LWA_APP_ID"))
    lwa_client_secret: str = Field(
        default="", validation_alias=AliasChoices("AMAZON_LWA_CLIENT_SECRET", "LWA_CLIENT_SECRET")
    )
    aws_access_key: Optional[str] = None   # AMAZON_AWS_ACCESS_KEY
    aws_secret_key: Optional[str] = None   # AMAZON_AWS_SECRET_KEY
    role_arn: Optional[str] = None         # AMAZON_ROLE_ARN

    # Marketplaces.<code> of python-amazon-sp-api
    marketplace: str = "US"
    marketplace_ids: List[str] = ["ATVPDKIKX0DER"]

    # Token used for credential ref "default"
    refresh_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("AMAZON_REFRESH_TOKEN", "REFRESH_TOKEN")
    )
    credentials: Dict[str, str] = {}

    def sp_api_credentials(self, refresh_token: str) -> Dict[str, str]:
        """Build the credentials dict python-amazon-sp-api clients take."""
        creds = {
            "refresh_token": refresh_token,
            "lwa_app_id": self.lwa_app_id,
            "lwa_client_secret": self.lwa_client_secret,
        }
        if self.aws_access_key and self.aws_secret_key:
            creds["aws_access_key"] = self.aws_access_key
            creds["aws_secret_key"] = self.aws_secret_key
        if self.role_arn:
            creds["role_arn"] = self.role_arn
        return creds
