import asyncio

from nospay import GiftWrapListener

"""
使い捨ての鍵でNIP-17のDMを待ち受ける例
<relay url> := wss://...
"""

def on_message(content, rumor):
    print(f"from {rumor.pubkey}: {content}", flush=True)

def on_error(relay_url, error):
    print(f"[{error.kind.value}] {relay_url}: {error}", flush=True)

async def main():
    async with GiftWrapListener(
        relays=["<relay url>", "<relay url>"],
        on_message=on_message,
        on_error=on_error,
    ) as listener:
        print(listener.nprofile(), flush=True)
        await asyncio.sleep(300)

if __name__ == "__main__":
    asyncio.run(main())
