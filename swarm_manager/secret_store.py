"""External secret store (AWS Secrets Manager) holding the certificate password."""

import json

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from swarm_manager.exceptions import SecretStoreError
from swarm_manager.logging_config import get_logger

logger = get_logger(__name__)


class SecretStore:
    """Merge-update a JSON secret document in Secrets Manager."""

    def __init__(self, secret_name: str, region: str, client=None):
        """Initialize the store.

        Args:
            secret_name: Secret id holding the JSON document
            region: AWS region of the secret
            client: Optional pre-built Secrets Manager client
        """
        self.secret_name = secret_name
        self.region = region
        self.client = client or boto3.client("secretsmanager", region_name=region)

    def read(self) -> dict | None:
        """Return the current document, or None if the secret does not exist.

        Raises:
            SecretStoreError: If the secret cannot be read or is not a JSON object
        """
        try:
            response = self.client.get_secret_value(SecretId=self.secret_name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return None
            raise SecretStoreError(f"Failed to read secret {self.secret_name}", str(e))
        except BotoCoreError as e:
            raise SecretStoreError(f"Failed to read secret {self.secret_name}", str(e))

        raw = response.get("SecretString") or "{}"
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SecretStoreError(
                f"Secret {self.secret_name} does not contain valid JSON",
                f"Refusing to overwrite it: {e}",
            )
        if not isinstance(document, dict):
            raise SecretStoreError(
                f"Secret {self.secret_name} is not a JSON object",
                "Refusing to overwrite a non-object secret document",
            )
        return document

    def merge_key(self, key: str, value: str) -> dict:
        """Set `key` in the document, keeping every other key verbatim.

        Creates the secret when it does not exist yet.

        Returns:
            The document as written

        Raises:
            SecretStoreError: If the read or write fails
        """
        logger.info(f"Updating secret {self.secret_name} (key {key})")
        current = self.read()

        try:
            if current is None:
                document = {key: value}
                self.client.create_secret(
                    Name=self.secret_name, SecretString=json.dumps(document)
                )
                logger.info(f"Created secret {self.secret_name}")
            else:
                document = {**current, key: value}
                self.client.put_secret_value(
                    SecretId=self.secret_name, SecretString=json.dumps(document)
                )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to write secret {self.secret_name}: {e}")
            raise SecretStoreError(f"Failed to write secret {self.secret_name}", str(e))

        return document
