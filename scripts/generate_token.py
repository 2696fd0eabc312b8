"""
CLI utility to mint HMAC-signed JWTs for manual testing of the gateway.

With OAUTH_PROVIDER=hmac the gateway validates HS256 tokens signed with
JWT_SECRET and bound to OIDC_AUDIENCE. This script plays the token issuer:
it signs tokens with the same secret and audience.

Usage examples:

    # Token for the default audience
    python -m scripts.generate_token --sub alice --secret "$JWT_SECRET" --aud querygate

    # Token with an issuer, email and a two hour lifetime
    python -m scripts.generate_token --sub ci-agent --secret "$JWT_SECRET" --aud querygate \\
        --iss https://tokens.example.com --email ci@example.com --exp-hours 2

    # Token for another service (the gateway must reject it)
    python -m scripts.generate_token --sub alice --secret "$JWT_SECRET" --aud other-service

    # Expired token (for testing rejection)
    python -m scripts.generate_token --sub alice --secret "$JWT_SECRET" --aud querygate --exp-hours -1
"""

import argparse
import datetime

import jwt


def generate_token(
    subject: str,
    secret: str,
    audience: str | list[str],
    issuer: str = "",
    email: str = "",
    scopes: list[str] | None = None,
    exp_hours: float = 8.0,
) -> str:
    """
    Generate an HS256 token with the given claims.

    Args:
        subject: The "sub" claim
        secret: The signing key (must match the server's JWT_SECRET)
        audience: The "aud" claim, a single audience or a list
        issuer: Optional "iss" claim
        email: Optional "email" claim
        scopes: Optional scopes, sent as a space-delimited "scope" claim
        exp_hours: Hours until expiration (negative = already expired)
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": subject,
        "aud": audience,
        "iat": now,
        "exp": now + datetime.timedelta(hours=exp_hours),
    }
    if issuer:
        payload["iss"] = issuer
    if email:
        payload["email"] = email
    if scopes:
        payload["scope"] = " ".join(scopes)

    return jwt.encode(payload, secret, algorithm="HS256")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate HS256 JWT tokens for the querygate MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--sub", required=True, help="Subject claim (e.g., 'alice', 'ci-agent')")
    parser.add_argument("--secret", required=True, help="Signing secret (server's JWT_SECRET)")
    parser.add_argument(
        "--aud",
        nargs="+",
        required=True,
        help="Audience claim; several values produce a list (server's OIDC_AUDIENCE)",
    )
    parser.add_argument("--iss", default="", help="Issuer claim")
    parser.add_argument("--email", default="", help="Email claim")
    parser.add_argument("--scope", nargs="+", default=[], help="Space-separated scopes")
    parser.add_argument(
        "--exp-hours",
        type=float,
        default=8.0,
        help="Hours until token expires (negative = already expired, default: 8)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    audience = args.aud[0] if len(args.aud) == 1 else args.aud

    token = generate_token(
        subject=args.sub,
        secret=args.secret,
        audience=audience,
        issuer=args.iss,
        email=args.email,
        scopes=args.scope,
        exp_hours=args.exp_hours,
    )

    exp_time = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
        hours=args.exp_hours
    )
    print(f"Subject:    {args.sub}")
    print(f"Audience:   {audience}")
    print(f"Expires:    {exp_time.isoformat()}")
    print()
    print(f"Token: {token}")
    print()
    print("Usage with curl (initialize MCP session):")
    print("  curl -X POST http://localhost:8080/mcp \\")
    print('    -H "Content-Type: application/json" \\')
    print('    -H "Accept: application/json, text/event-stream" \\')
    print(f'    -H "Authorization: Bearer {token}" \\')
    print(
        '    -d \'{"jsonrpc":"2.0","id":1,"method":"initialize",'
        '"params":{"protocolVersion":"2025-03-26","capabilities":{},'
        '"clientInfo":{"name":"test","version":"1.0"}}}\''
    )


if __name__ == "__main__":
    main()
