#!/usr/bin/env python3
"""
End-to-end smoke test of a push against a running server.

Steps:
1. Check wharf status
2. Create a build on a channel
3. Register one archive file
4. Upload bytes to the presigned URL
5. Finalize the file
6. Verify the channel head is the completed build
7. Push again and check the parent link
8. Follow the archive download redirect

Usage:
    BUILDHOST_API_KEY=... python scripts/e2e_push.py alice/demo
"""
import asyncio
import os
import sys

import httpx

API_URL = os.environ.get("BUILDHOST_URL", "http://localhost:8080")
API_KEY = os.environ.get("BUILDHOST_API_KEY", "")
CHANNEL = os.environ.get("BUILDHOST_CHANNEL", "main")
PAYLOAD = os.urandom(1024)


async def push(client: httpx.AsyncClient, headers: dict, target: str, version: str) -> dict:
    resp = await client.post(f"{API_URL}/wharf/builds", headers=headers, json={
        "target": target,
        "channel": CHANNEL,
        "user_version": version,
    })
    resp.raise_for_status()
    build = resp.json()["build"]
    print(f"   ✓ Build {build['id']} ({build['state']}), parent: {build.get('parentBuild')}")

    resp = await client.post(
        f"{API_URL}/wharf/builds/{build['id']}/files",
        headers=headers,
        data={"type": "archive", "sub_type": "default"},
    )
    resp.raise_for_status()
    file = resp.json()["file"]
    print(f"   ✓ Registered file {file['id']}")

    resp = await client.put(file["upload_url"], content=PAYLOAD, headers=file["upload_headers"])
    resp.raise_for_status()
    print(f"   ✓ Uploaded {len(PAYLOAD)} bytes")

    resp = await client.post(
        f"{API_URL}/wharf/builds/{build['id']}/files/{file['id']}",
        headers=headers,
        data={"size": str(len(PAYLOAD))},
    )
    resp.raise_for_status()
    finalized = resp.json()["file"]
    print(f"   ✓ Finalized: size={finalized['size']} state={finalized['state']}")

    return build


async def main(target: str) -> int:
    if not API_KEY:
        print("Set BUILDHOST_API_KEY (see: buildhost-admin create-user)")
        return 2

    headers = {"Authorization": f"Bearer {API_KEY}"}

    async with httpx.AsyncClient(timeout=60.0) as client:
        print("=" * 60)
        print(f"E2E Push Test: {target} channel {CHANNEL}")
        print("=" * 60)

        print("\n1. Checking wharf status...")
        try:
            resp = await client.get(f"{API_URL}/wharf/status", headers=headers)
            resp.raise_for_status()
            print("   ✓ Wharf is up")
        except httpx.HTTPError as e:
            print(f"   ✗ Failed: {e}")
            return 1

        print("\n2-5. Pushing first build...")
        try:
            first = await push(client, headers, target, "1.0.0")
        except httpx.HTTPError as e:
            print(f"   ✗ Failed: {e}")
            return 1

        print("\n6. Checking channel head...")
        resp = await client.get(f"{API_URL}/wharf/channels", headers=headers, params={"target": target})
        resp.raise_for_status()
        head = resp.json()["channels"][CHANNEL].get("head", {})
        if head.get("id") != first["id"] or head.get("state") != "completed":
            print(f"   ✗ Unexpected head: {head}")
            return 1
        print(f"   ✓ Head is build {head['id']} ({head['state']})")

        print("\n7. Pushing second build...")
        try:
            second = await push(client, headers, target, "1.0.1")
        except httpx.HTTPError as e:
            print(f"   ✗ Failed: {e}")
            return 1
        if second.get("parentBuild", {}).get("id") != first["id"]:
            print(f"   ✗ Expected parent {first['id']}, got {second.get('parentBuild')}")
            return 1
        print(f"   ✓ Parent is build {first['id']}")

        print("\n8. Fetching archive download...")
        resp = await client.get(f"{API_URL}/wharf/builds/{second['id']}/files", headers=headers)
        resp.raise_for_status()
        # The generated archive is registered after the client's own files
        archives = [
            f for f in resp.json().get("Files", [])
            if f["type"] == "archive" and f["state"] == "uploaded"
        ]
        if len(archives) < 2:
            print("   ✗ No generated archive on the build")
            return 1
        resp = await client.get(
            f"{API_URL}/wharf/builds/{second['id']}/files/{archives[-1]['id']}/download",
            headers=headers,
        )
        if resp.status_code != 307:
            print(f"   ✗ Expected a redirect, got {resp.status_code}")
            return 1
        print("   ✓ Download redirects to storage")

        print("\n" + "=" * 60)
        print("E2E push test passed")
        print("=" * 60)
        return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "alice/demo")))
