"""Interactive CLI login simulator — walk the OTP flow against a running server."""

import asyncio
import sys

import httpx

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"


def _show_error(resp: httpx.Response) -> None:
    try:
        message = resp.json().get("error", resp.text)
    except ValueError:
        message = resp.text
    print(f"{RED}{BOLD}Server:{RESET} {resp.status_code} {message}\n")


async def main(base_url: str) -> None:
    print(f"\n{BOLD}{'=' * 52}")
    print(f"  🔐  OTP Auth — Login Simulator")
    print(f"{'=' * 52}{RESET}\n")
    print(f"{DIM}Server: {base_url}{RESET}")
    print(f"{DIM}     Type 'quit' to exit, 'resend' to request a new code{RESET}")
    print(f"{DIM}     With EXPOSE_CODE_IN_RESPONSE=true the code is shown here{RESET}\n")

    async with httpx.AsyncClient(base_url=base_url, timeout=15) as client:
        email = input(f"{YELLOW}Email address: {RESET}").strip()
        token = None

        while token is None:
            resp = await client.post("/auth/request-code", json={"email": email})
            if resp.status_code != 200:
                _show_error(resp)
                return
            data = resp.json()
            print(f"{GREEN}{BOLD}Server:{RESET} {data['message']} (valid {data['expires_in']}s)")
            if data.get("code"):
                print(f"{DIM}Dev code: {data['code']}{RESET}")
            print()

            while True:
                try:
                    code = input(f"{BLUE}{BOLD}Code:{RESET} ").strip()
                except (KeyboardInterrupt, EOFError):
                    print(f"\n{DIM}Goodbye!{RESET}")
                    return

                if code.lower() == "quit":
                    print(f"{DIM}Goodbye!{RESET}")
                    return
                if code.lower() == "resend":
                    break

                resp = await client.post("/auth/verify-code", json={"email": email, "code": code})
                if resp.status_code == 200:
                    token = resp.json()["token"]
                    print(f"{GREEN}{BOLD}Server:{RESET} ✅ Verified as {resp.json()['email']}\n")
                    break
                _show_error(resp)

        resp = await client.get("/protected", headers={"Authorization": f"Bearer {token}"})
        if resp.status_code == 200:
            data = resp.json()
            print(f"{GREEN}{BOLD}Protected:{RESET} user={data['user']} expires={data['expires']}\n")
        else:
            _show_error(resp)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "http://127.0.0.1:8000"))
