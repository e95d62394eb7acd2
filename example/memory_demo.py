import asyncio
import logging

from meshroom import MeshRoom, MemoryHub
from meshroom.testing import SimulatedDevice

async def main():
    # Everything in one process: a hub, one simulated camera, one client
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    hub = MemoryHub()

    camera = SimulatedDevice(hub, "demo", "camera-01", profile={"model": "cam-x"}, stream="<video>")
    camera.route("GET", "/status", lambda req: {"recording": False})
    await camera.start()

    async with MeshRoom("demo", hub=hub, peer_id="app-1") as client:
        client.on("message", lambda topic, payload: print("message:", topic, payload))
        client.subscribe("camera/+")
        while not client.devices:
            await asyncio.sleep(0.01)

        resp = await client.fetch("camera-01/status")
        print("status:", resp.status, await resp.json())

        camera.publish("camera/motion", {"zone": 3})
        client.publish("camera/config", {"fps": 30})

        stream = await client.request_streaming("camera-01")
        print("stream:", stream)
        await client.stop_streaming("camera-01")

    camera.stop()

if __name__ == "__main__":
    asyncio.run(main())
