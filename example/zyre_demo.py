import asyncio

from meshroom import MeshRoom

async def main():
    # Joins the Zyre group "demo" as app-1
    # Run a device node (name starting with "SSG_") in the same group to see traffic
    client = MeshRoom("demo", transport="zyre", peer_id="app-1", codec="json")
    client.on("device:connected", lambda uuid, profile: print("device connected:", uuid, profile))
    client.on("message", lambda topic, payload: print("message:", topic, payload))

    await client.start()
    client.subscribe("sensor/#")

    # give discovery a moment; with no device around nothing gets connected
    await asyncio.sleep(2.0)
    for device in client.devices:
        try:
            resp = await client.fetch(f"{device.uuid}/echo", method="POST", body={"msg": "hello over Zyre"})
            print("RESP from", device.uuid, resp.status, await resp.json())
        except Exception as e:
            print("No response from", device.uuid, e)

    print("published to", client.publish("demo/note", {"note": "hello group"}), "device(s)")

    await asyncio.sleep(0.5)
    await client.close()

if __name__ == "__main__":
    asyncio.run(main())
