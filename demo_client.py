"""Demo client exercising the idempotency gate.

Start the demo server first (python demo_app.py), then run:

    python demo_client.py [base_url]

The client:
1. Makes a payment with a fresh idempotency key
2. Retries it with the same key and expects the identical cached response
3. Sends three concurrent requests sharing a key; one executes, the rest
   are rejected with 409 or replayed
"""

import asyncio
import sys
import uuid

import httpx

BASE_URL = "http://localhost:3000"


async def make_payment(
    client: httpx.AsyncClient,
    user_id: int,
    amount: float,
    description: str,
    key: str,
) -> httpx.Response:
    return await client.post(
        "/api/payment",
        json={"userId": user_id, "amount": amount, "description": description},
        headers={"Idempotency-Key": key},
    )


def describe(label: str, response: httpx.Response) -> None:
    replayed = response.headers.get("idempotent-replay", "false")
    print(f"{label}: {response.status_code} replay={replayed} {response.text}")


async def main(base_url: str) -> None:
    async with httpx.AsyncClient(base_url=base_url, timeout=10.0) as client:
        key = str(uuid.uuid4())

        print("Test 1: first payment")
        first = await make_payment(client, 1, 100.50, "Test payment", key)
        describe("  first", first)

        print("Test 2: retry with the same key")
        retry = await make_payment(client, 1, 100.50, "Test payment", key)
        describe("  retry", retry)
        if retry.content == first.content and retry.status_code == first.status_code:
            print("  identical response, no second debit")
        else:
            print("  responses differ")

        print("Test 3: concurrent requests with one key")
        concurrent_key = str(uuid.uuid4())
        responses = await asyncio.gather(
            *(
                make_payment(client, 2, 50.00, "Concurrent test", concurrent_key)
                for _ in range(3)
            )
        )
        for i, response in enumerate(responses, start=1):
            describe(f"  request {i}", response)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else BASE_URL))
