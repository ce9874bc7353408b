"""
Cloud credential check performed before any destructive call.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .errors import AuthError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerIdentity:
    account: str
    arn: str


def resolve_identity(
    region: str,
    session: Optional[boto3.session.Session] = None,
    expected_account: Optional[str] = None,
) -> CallerIdentity:
    """
    Return the active AWS identity.

    Args:
        region: AWS region for the STS call
        session: boto3 session to use (a default one is created if omitted)
        expected_account: Refuse to continue when the account differs

    Returns:
        CallerIdentity

    Raises:
        AuthError: If no valid credentials are available or the account is wrong
    """
    session = session or boto3.session.Session(region_name=region)

    try:
        response = session.client("sts", region_name=region).get_caller_identity()
    except NoCredentialsError as e:
        raise AuthError(
            "No AWS credentials found",
            hint="Run `aws configure`, `aws sso login` or export AWS_PROFILE",
        ) from e
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        raise AuthError(f"AWS credentials rejected ({code or 'ClientError'}): {e}") from e
    except BotoCoreError as e:
        raise AuthError(f"Could not verify AWS credentials: {e}") from e

    account = response.get("Account", "")
    if not account:
        raise AuthError("STS returned no account id")

    if expected_account and account != expected_account:
        raise AuthError(f"Expected account {expected_account}, got {account}")

    logger.debug(f"Caller identity {response.get('Arn')} in {account}")
    return CallerIdentity(account=account, arn=response.get("Arn", ""))
