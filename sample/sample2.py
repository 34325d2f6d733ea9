import asyncio
import logging

from nospay import GiftWrapListener, KeyPair

"""
nsecから鍵を読み込み、リレーの接続状態を表示しながら待ち受ける例
<your secret key> := nsec or hex
<relay url> := wss://...
"""

async def main():
    secret = "<your secret key>"
    keypair = KeyPair.from_nsec(secret) if secret.startswith("nsec") else KeyPair.from_secret(secret)

    messages:asyncio.Queue = asyncio.Queue()
    listener = GiftWrapListener(
        ["<relay url>"],
        lambda content, rumor: messages.put_nowait(content),
        keypair=keypair,
        initial_backoff=2.0,
        max_backoff=30.0,
    )
    async with listener:
        print(listener.npub, flush=True)
        for _ in range(5):
            try:
                content = await asyncio.wait_for(messages.get(), timeout=60)
                print(">>>", content, flush=True)
            except asyncio.TimeoutError:
                for url, state in listener.client.snapshot().items():
                    print(url, state.status.value, state.failures, flush=True)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
