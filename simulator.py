"""Interactive CLI simulator — try the OTP flow without SMS or email providers."""

import asyncio

from clinic_otp.otp.errors import InvalidTargetError
from clinic_otp.otp.normalizer import normalize_target
from clinic_otp.otp.store import InMemoryOTPStore
from clinic_otp.services.dispatcher import LoggingDispatcher
from clinic_otp.services.verification import VerificationGate

BLUE = "\033[94m"
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"


def _method_for(target: str) -> str:
    return "email" if "@" in target else "phone"


async def main() -> None:
    print(f"\n{BOLD}{'=' * 52}")
    print("  🔐  Clinic OTP — Simulator")
    print(f"{'=' * 52}{RESET}\n")

    print(f"{DIM}Commands: send <phone|email>, verify <phone|email> <code>,")
    print(f"          peek <phone|email>, quit{RESET}")
    print(f"{DIM}Tip: 09171234567, +639171234567 and 639171234567 are the same target{RESET}\n")

    # ── Set up the gate with a delivery that just records codes ──
    dispatcher = LoggingDispatcher()
    store = InMemoryOTPStore()
    gate = VerificationGate(store, dispatcher)

    while True:
        try:
            line = input(f"{BLUE}{BOLD}>{RESET} ").strip()
        except (KeyboardInterrupt, EOFError):
            print(f"\n{DIM}Goodbye!{RESET}")
            break

        if not line:
            continue

        command, *args = line.split()
        command = command.lower()

        if command == "quit":
            print(f"{DIM}Goodbye!{RESET}")
            break

        if command == "send" and len(args) == 1:
            outcome = await gate.request_code(args[0], _method_for(args[0]))
            if outcome.success:
                target, _, code = dispatcher.sent[-1]
                print(f"{GREEN}✅ {outcome.message}{RESET} {DIM}({target} ← {code}){RESET}\n")
            else:
                print(f"{RED}❌ {outcome.message}{RESET}\n")
            continue

        if command == "verify" and len(args) == 2:
            outcome = await gate.verify_code(args[0], args[1], _method_for(args[0]))
            colour = GREEN if outcome.success else RED
            print(f"{colour}{outcome.message}{RESET}\n")
            continue

        if command == "peek" and len(args) == 1:
            try:
                canonical = normalize_target(args[0])
            except InvalidTargetError as exc:
                print(f"{RED}❌ {exc.message}{RESET}\n")
                continue
            record = await store.peek(canonical)
            if record is None:
                print(f"{YELLOW}No pending code for {canonical}{RESET}\n")
            else:
                print(
                    f"{YELLOW}{canonical}: {record.code} via {record.channel}, "
                    f"expires {record.expires_at:%H:%M:%S} UTC{RESET}\n"
                )
            continue

        print(f"{DIM}Unknown command{RESET}\n")


if __name__ == "__main__":
    asyncio.run(main())
