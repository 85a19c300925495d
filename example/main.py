import asyncio

from vaultum_server import FakeVaultumServer
from vaultum_sdk.errors import VaultumError
from vaultum_sdk.models import (
    Chain,
    ClientOptions,
    PollConfig,
    QuoteRequest,
    SubmitRequest,
    UserOperation,
)
from vaultum_sdk.vaultum_client import VaultumApiClient


async def status_changed(status):
    print(f"Operation {status.id} is {status.state.value} (tx: {status.tx_hash})")


async def main():
    PORT = 8000
    server = FakeVaultumServer()
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    op_id = server.next_id
    server.script(
        op_id,
        {"id": op_id, "state": "queued", "txHash": None},
        {"id": op_id, "state": "sent", "txHash": "0x" + "ab" * 32},
        {"id": op_id, "state": "success", "txHash": "0x" + "ab" * 32},
    )

    options = ClientOptions(base_url=f"http://localhost:{PORT}", api_key="demo-key")
    user_op = UserOperation(
        sender="0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0",
        nonce="0",
        init_code="0x",
        call_data="0x",
        call_gas_limit="100000",
        verification_gas_limit="100000",
        pre_verification_gas="21000",
        max_fee_per_gas="1000000000",
        max_priority_fee_per_gas="1000000000",
        paymaster_and_data="0x",
    )

    async with VaultumApiClient(options) as client:
        try:
            quote = await client.quote_op(
                QuoteRequest(
                    from_chain=Chain.ethereum,
                    to_chain=Chain.base,
                    token="0x0000000000000000000000000000000000000000",
                    amount="1000000000000000000",
                )
            )
            print(f"Estimated fee: {quote.estimated_fee}")

            submitted = await client.submit_op(SubmitRequest(chain=Chain.ethereum, user_op=user_op))
            final_status = await client.wait_for_operation(
                submitted.id,
                PollConfig(interval_ms=500, timeout_ms=30_000),
                on_status_change=status_changed,
            )
            print(f"Final status: {final_status.state.value}")
        except TimeoutError as e:
            print(f"Polling timed out: {e}")
        except VaultumError as e:
            print(f"Error occurred ({e.kind.value}): {e}")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
