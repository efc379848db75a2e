import httpx
import asyncio
import sys
import uuid

BASE_URL = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

async def run_verification():
    print(f"🚀  Starting Verification against {BASE_URL}...\n")

    async with httpx.AsyncClient(base_url=BASE_URL, timeout=10.0) as client:
        # 1. Health Check
        print("1. [Health] Checking /health...")
        try:
            resp = await client.get("/health")
            if resp.status_code == 200 and resp.json() == {"status": "ok"}:
                print("   ✅  Health Check Passed")
            else:
                print(f"   ❌  Health Check Failed: {resp.text}")
                return
        except Exception as e:
            print(f"   ❌  Connection Error: {e}")
            return

        # 2. Create Short URL
        print("\n2. [API] Creating Short URL...")
        long_url = "https://www.example.com/verify?source=script"
        # Shortcodes never expire out of the registry, so use a fresh one per run
        alias = f"verify-{uuid.uuid4().hex[:8]}"
        payload = {"url": long_url, "validity": 5, "shortcode": alias}

        resp = await client.post("/shorturls", json=payload)
        if resp.status_code == 201:
            data = resp.json()
            print(f"   ✅  Created: {data['shortLink']} (expires {data['expiry']})")
        else:
            print(f"   ❌  Create Failed: {resp.status_code} {resp.text}")
            return

        # 3. Duplicate shortcode
        print("\n3. [API] Verifying Shortcode Conflict...")
        resp = await client.post("/shorturls", json=payload)
        if resp.status_code == 409:
            print("   ✅  Duplicate rejected with 409")
        else:
            print(f"   ❌  Expected 409, got {resp.status_code}")

        # 4. Verify Redirect
        print("\n4. [API] Verifying Redirect...")
        resp = await client.get(f"/{alias}", headers={"Referer": "https://verify.local"}, follow_redirects=False)
        if resp.status_code == 302 and resp.headers.get("location") == long_url:
            print(f"   ✅  Redirect Location matches: {resp.headers['location']}")
        else:
            print(f"   ❌  Redirect Failed: {resp.status_code} {resp.headers.get('location')}")

        # 5. Verify Statistics
        print("\n5. [API] Verifying Statistics...")
        resp = await client.get(f"/shorturls/{alias}")
        if resp.status_code == 200:
            data = resp.json()
            history = data["clickHistory"]
            if data["totalClicks"] == 1 and len(history) == 1 and history[0]["referrer"] == "https://verify.local":
                print(f"   ✅  Click recorded: {history[0]}")
            else:
                print(f"   ❌  Unexpected statistics: {data}")
        else:
            print(f"   ❌  Statistics Failed: {resp.status_code}")

        # 6. Listing
        print("\n6. [API] Verifying Listing...")
        resp = await client.get("/api/urls")
        if resp.status_code == 200 and any(u["shortcode"] == alias for u in resp.json()):
            print(f"   ✅  Listed among {len(resp.json())} URLs")
        else:
            print(f"   ❌  Listing Failed: {resp.status_code}")

        # 7. Unknown shortcode
        print("\n7. [API] Verifying Unknown Shortcode...")
        resp = await client.get(f"/missing-{uuid.uuid4().hex[:8]}", follow_redirects=False)
        if resp.status_code == 404 and resp.json().get("error") == "Shortcode not found":
            print("   ✅  Unknown shortcode returns 404")
        else:
            print(f"   ❌  Expected 404, got {resp.status_code}")

        # 8. Metrics
        print("\n8. [Observability] Verifying Metrics...")
        resp = await client.get("/metrics")
        if resp.status_code == 200 and "redirect_total" in resp.text:
            print("   ✅  Metrics Endpoint Exposed")
        else:
            print(f"   ❌  Metrics Failed: {resp.status_code}")

    print("\n✨ Verification Complete!")

if __name__ == "__main__":
    asyncio.run(run_verification())
