"""On-chain human-verification lookup.

A single read-only ``isHumanVerified(agentId)`` call against the World ID
validator contract. The call is idempotent and gas-free; any RPC or decoding
failure is reported as ``VerificationUnavailable`` and callers must treat it
as "not verified".
"""

import logging

from whitewall.config import settings

logger = logging.getLogger(__name__)

IS_HUMAN_VERIFIED_ABI = [
    {
        "inputs": [{"name": "agentId", "type": "uint256"}],
        "name": "isHumanVerified",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class VerificationUnavailable(Exception):
    """The verification contract could not be read."""


async def is_human_verified(agent_id: int) -> bool:
    from web3 import AsyncHTTPProvider, AsyncWeb3

    w3 = AsyncWeb3(
        AsyncHTTPProvider(
            settings.resolved_rpc_url,
            request_kwargs={"timeout": settings.verification_timeout_seconds},
        )
    )
    validator = w3.eth.contract(
        address=w3.to_checksum_address(settings.verifier_contract_address),
        abi=IS_HUMAN_VERIFIED_ABI,
    )
    try:
        verified = await validator.functions.isHumanVerified(agent_id).call()
    except Exception as e:
        logger.warning("isHumanVerified(%s) failed: %s", agent_id, e)
        raise VerificationUnavailable(str(e) or e.__class__.__name__) from e
    return bool(verified)
