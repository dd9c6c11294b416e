import argparse
import asyncio
import secrets

from net.tessera.accounts.app.config import (
    MIN_TOKEN_SECRET_LENGTH,
    Settings,
    token_authority_from_settings,
)


async def genSecret() -> None:
    print(secrets.token_urlsafe(MIN_TOKEN_SECRET_LENGTH))


async def issueToken(account_id: int, handle: str) -> None:
    settings = Settings()  # type: ignore
    token_authority = token_authority_from_settings(settings)
    print(token_authority.issue(account_id, handle))


async def realMain() -> None:
    parser = argparse.ArgumentParser(
        prog="accountsutil", description="Accounts service utilities"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    _ = subparsers.add_parser("gen-secret", help="Generate a token signing secret")
    issue_token = subparsers.add_parser(
        "issue-token",
        help="Sign a session token with the configured TOKEN_SECRET",
    )

    issue_token.add_argument("account_id", type=int, help="The account identifier.")
    issue_token.add_argument("handle", help="The account handle.")

    args = vars(parser.parse_args())
    command = args.get("command", None)

    if command == "gen-secret":
        await genSecret()
    elif command == "issue-token":
        account_id: int = args["account_id"]
        handle: str = args["handle"]
        await issueToken(account_id, handle)


def main() -> None:
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
