"""
Manual smoke test: POST an image to /api/process-image and print the result.

Run with the API server already running:
    uvicorn src.main:app --reload

Then in another terminal:
    python test.py path/to/poem.jpg
"""

import base64
import sys

import httpx

BASE = "http://127.0.0.1:8000"


def main(path: str) -> None:
    with open(path, "rb") as f:
        image = base64.b64encode(f.read()).decode()

    print(f"POST /api/process-image ({len(image):,} base64 chars) ...")
    r = httpx.post(f"{BASE}/api/process-image", json={"image": image}, timeout=120)
    print(f"status:   {r.status_code}")

    data = r.json()
    if r.status_code != 200:
        print(f"error:    {data.get('error')}")
        if data.get("details"):
            print(f"details:  {data['details']}")
        if data.get("rawResponse"):
            print(f"raw:      {data['rawResponse']!r}")
        sys.exit(1)

    print(f"language: {data['language']}")
    print(f"poem:     {data['isPoem']}")
    if data["isPoem"]:
        for i, stanza in enumerate(data["content"], start=1):
            print(f"\n[{i}] {stanza['original']}")
            if "transliteration" in stanza:
                print(f"    {stanza['transliteration']}")
            print(f"    -> {stanza['translation']}")
    else:
        print(f"\n{data['content']}")
        if data.get("translation"):
            print(f"\n-> {data['translation']}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python test.py <image>")
        sys.exit(2)
    main(sys.argv[1])
