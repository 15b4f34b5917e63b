"""
CLI utility to mint caller tokens for the streamable-HTTP deployment.

When ASANA_JWT_SECRET_KEY is set, every tools/list and tools/call must carry a
bearer JWT signed with that key. In production these tokens would come from an
identity provider; for local runs this script plays that role.

Usage examples:

    # Token for an agent, valid 8 hours, secret taken from ASANA_JWT_SECRET_KEY
    python -m scripts.generate_token --sub ci-agent

    # Explicit secret and lifetime
    python -m scripts.generate_token --sub alice --secret my-secret --exp-hours 2

    # Expired token (for testing rejection)
    python -m scripts.generate_token --sub alice --exp-hours -1

Register the server with an MCP client:

    claude mcp add --transport http asana http://localhost:8080/mcp \\
      --header "Authorization: Bearer <token>"
"""

import argparse
import datetime
import os

import jwt


def generate_token(
    subject: str,
    secret: str,
    algorithm: str = "HS256",
    exp_hours: float = 8.0,
) -> str:
    """
    Generate a signed JWT identifying `subject`.

    Args:
        subject: The "sub" claim, recorded in the server's audit log
        secret: Signing key (must match the server's ASANA_JWT_SECRET_KEY)
        algorithm: JWT signing algorithm
        exp_hours: Hours until expiration (negative = already expired)
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": subject,
        "iat": now,
        "exp": now + datetime.timedelta(hours=exp_hours),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def main() -> None:
    parser = argparse.ArgumentParser(description="Mint caller tokens for the scoped Asana MCP server.")
    parser.add_argument("--sub", required=True, help="Subject claim, e.g. 'ci-agent'")
    parser.add_argument(
        "--secret",
        default=os.environ.get("ASANA_JWT_SECRET_KEY"),
        help="Signing secret (default: $ASANA_JWT_SECRET_KEY)",
    )
    parser.add_argument("--algorithm", default=os.environ.get("ASANA_JWT_ALGORITHM", "HS256"))
    parser.add_argument("--exp-hours", type=float, default=8.0, help="Hours until expiry (default: 8)")
    args = parser.parse_args()

    if not args.secret:
        parser.error("no signing secret: pass --secret or set ASANA_JWT_SECRET_KEY")

    token = generate_token(args.sub, args.secret, args.algorithm, args.exp_hours)
    expires = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=args.exp_hours)

    print(f"Subject:    {args.sub}")
    print(f"Expires:    {expires.isoformat()}")
    print(f"Algorithm:  {args.algorithm}")
    print()
    print(f"Token: {token}")


if __name__ == "__main__":
    main()
