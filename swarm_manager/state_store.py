"""Shared cluster state record stored in DynamoDB.

One item per cluster name holds the rendezvous address and join tokens. The
item doubles as the init claim: a node may only run `swarm init` after its
conditional claim write succeeds.
"""

from datetime import datetime, timedelta, timezone

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from swarm_manager.exceptions import StateStoreError
from swarm_manager.logging_config import get_logger
from swarm_manager.models.cluster import RECORD_ATTRIBUTES, ClusterRecord, format_timestamp

logger = get_logger(__name__)


class ClusterStateStore:
    """Read and write the shared cluster state record."""

    def __init__(self, table_name: str, region: str, client=None):
        """Initialize the store.

        Args:
            table_name: DynamoDB table keyed by `cluster_name`
            region: AWS region of the table
            client: Optional pre-built DynamoDB client
        """
        self.table_name = table_name
        self.region = region
        self.client = client or boto3.client("dynamodb", region_name=region)

    def _key(self, cluster_id: str) -> dict:
        return {"cluster_name": {"S": cluster_id}}

    def read(self, cluster_id: str) -> ClusterRecord | None:
        """Return the current record, or None if it has not been published.

        Raises:
            StateStoreError: If the table cannot be read
        """
        try:
            response = self.client.get_item(
                TableName=self.table_name, Key=self._key(cluster_id), ConsistentRead=True
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to read cluster record '{cluster_id}': {e}")
            raise StateStoreError(
                f"Failed to read cluster record '{cluster_id}' from {self.table_name}",
                str(e),
            )

        item = response.get("Item")
        if not item:
            logger.debug(f"No cluster record for '{cluster_id}'")
            return None
        return ClusterRecord.from_item(item)

    def publish(
        self,
        cluster_id: str,
        manager_address: str,
        worker_credential: str,
        manager_credential: str,
        *,
        node_id: str | None = None,
        overlay_network: str | None = None,
        lease_seconds: int | None = None,
    ) -> ClusterRecord:
        """Write the rendezvous address and join tokens.

        Unconditional and idempotent: only the node that won the init claim
        (or the current leader refreshing its tokens) calls this.

        Raises:
            StateStoreError: If the write fails
        """
        record = ClusterRecord(
            cluster_name=cluster_id,
            manager_address=manager_address,
            worker_token=worker_credential,
            manager_token=manager_credential,
            manager_node_id=node_id,
            overlay_network=overlay_network,
            lease_expires_at=(
                datetime.now(timezone.utc) + timedelta(seconds=lease_seconds)
                if lease_seconds
                else None
            ),
        )
        item = record.to_item()
        item.pop("cluster_name")

        names = {}
        values = {}
        assignments = []
        for i, (attribute, value) in enumerate(item.items()):
            names[f"#a{i}"] = attribute
            values[f":v{i}"] = value
            assignments.append(f"#a{i} = :v{i}")

        try:
            self.client.update_item(
                TableName=self.table_name,
                Key=self._key(cluster_id),
                UpdateExpression="SET " + ", ".join(assignments),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to publish cluster record '{cluster_id}': {e}")
            raise StateStoreError(
                f"Failed to publish cluster record '{cluster_id}' to {self.table_name}",
                str(e),
            )

        logger.info(f"Published cluster record '{cluster_id}' (manager {manager_address})")
        return record

    def try_claim(self, cluster_id: str, node_id: str, lease_seconds: int) -> bool:
        """Claim the right to initialize the cluster.

        The claim is a create-if-absent write; an unpublished record whose
        lease has run out or was never set can be taken over; a published
        record never can.

        Returns:
            True if this node now holds the claim, False if a peer does

        Raises:
            StateStoreError: On any failure other than losing the condition
        """
        now = datetime.now(timezone.utc)
        lease_until = format_timestamp(now + timedelta(seconds=lease_seconds))

        try:
            self.client.update_item(
                TableName=self.table_name,
                Key=self._key(cluster_id),
                UpdateExpression="SET #iid = :iid, #lease = :lease",
                ConditionExpression=(
                    "attribute_not_exists(#cn) OR "
                    "(attribute_not_exists(#addr) AND "
                    "(attribute_not_exists(#lease) OR #lease < :now))"
                ),
                ExpressionAttributeNames={
                    "#cn": "cluster_name",
                    "#iid": RECORD_ATTRIBUTES["manager_node_id"],
                    "#lease": RECORD_ATTRIBUTES["lease_expires_at"],
                    "#addr": RECORD_ATTRIBUTES["manager_address"],
                },
                ExpressionAttributeValues={
                    ":iid": {"S": node_id},
                    ":lease": {"S": lease_until},
                    ":now": {"S": format_timestamp(now)},
                },
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                logger.info(f"Init claim for '{cluster_id}' is held by a peer")
                return False
            logger.error(f"Failed to claim cluster '{cluster_id}': {e}")
            raise StateStoreError(f"Failed to claim cluster '{cluster_id}'", str(e))
        except BotoCoreError as e:
            logger.error(f"Failed to claim cluster '{cluster_id}': {e}")
            raise StateStoreError(f"Failed to claim cluster '{cluster_id}'", str(e))

        logger.info(f"Node {node_id} holds the init claim for '{cluster_id}' until {lease_until}")
        return True
