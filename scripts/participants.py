"""Operator CLI for tenants, participants and credentials.

This module serves as a CLI wrapper around dataspace_portal.core services.
Every command runs with global (ROLE_ADMIN) visibility.
"""
from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dataspace_portal.config import configure_logging, get_settings
from dataspace_portal.core.credential_service import CredentialIssuanceWorkflow
from dataspace_portal.core.errors import PortalError
from dataspace_portal.core.external_api import CredentialIssuerClient, ProvisionerClient
from dataspace_portal.core.keycloak import IdentityAdmin
from dataspace_portal.core.models import CredentialFormat, CredentialType, OperationEventType
from dataspace_portal.core.provisioning_service import ProvisioningOrchestrator
from dataspace_portal.core.tenant_service import TenantService, tenant_admin_username
from dataspace_portal.core.visibility import Scope
from dataspace_portal.db import init_db, make_engine, make_session_factory, session_scope


def _identity_admin(settings) -> IdentityAdmin:
    return IdentityAdmin.from_config(settings.keycloak)


def _provisioner(settings) -> ProvisionerClient:
    return ProvisionerClient.from_config(settings.external_api)


def _issuer(settings) -> CredentialIssuerClient:
    return CredentialIssuerClient.from_config(settings.external_api)


def _print(body) -> None:
    print(json.dumps(body, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Dataspace participant provisioning helper")
    parser.add_argument("--database-url", default=None,
                        help="Override DATABASE_URL for this invocation")
    parser.add_argument("--log-level", default=None)

    sub = parser.add_subparsers(dest="cmd")

    si = sub.add_parser("init-db", help="Create database tables")
    si.add_argument("--bootstrap-realm", action="store_true",
                    help="Also create the Keycloak realm, portal client and role set")

    st = sub.add_parser("create-tenant")
    st.add_argument("--name", required=True)
    st.add_argument("--description")
    st.add_argument("--admin-password", help="Tenant admin password (generated when omitted)")

    sc = sub.add_parser("create-participant")
    sc.add_argument("--tenant", required=True)
    sc.add_argument("--name", required=True)
    sc.add_argument("--username", required=True)
    sc.add_argument("--password", required=True)
    sc.add_argument("--company-name")
    sc.add_argument("--description")

    sa = sub.add_parser("activate", help="Mark a provisioned participant ACTIVE")
    sa.add_argument("--id", type=int, required=True)
    sa.add_argument("--did")
    sa.add_argument("--host")

    sd = sub.add_parser("delete-participant")
    sd.add_argument("--id", type=int, required=True)

    sr = sub.add_parser("request-credentials")
    sr.add_argument("--id", type=int, required=True)
    sr.add_argument("--type", dest="types", action="append",
                    choices=[t.value for t in CredentialType], required=True)
    sr.add_argument("--format", default=CredentialFormat.VC1_0_JWT.value,
                    choices=[f.value for f in CredentialFormat])

    so = sub.add_parser("operations")
    so.add_argument("--id", type=int, required=True)
    so.add_argument("--event-type", choices=[e.value for e in OperationEventType])
    so.add_argument("--page", type=int, default=0)
    so.add_argument("--limit", type=int, default=20)

    return parser


def main(argv=None) -> None:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)
    engine = make_engine(args.database_url or settings.database_url)
    factory = make_session_factory(engine)
    scope = Scope.global_()

    if args.cmd == "init-db":
        init_db(engine)
        if args.bootstrap_realm:
            kc = settings.keycloak
            try:
                _identity_admin(settings).bootstrap_realm(
                    kc.realm,
                    kc.client_id,
                    kc.tenant_claim_key,
                    [settings.roles.admin, settings.roles.admin_tenant, settings.roles.user_participant],
                    root_url=kc.client_root_url,
                    redirect_uris=kc.redirect_uris,
                    web_origins=kc.web_origins,
                )
            except PortalError as e:
                print(f"[init] Error: {e.message}", file=sys.stderr)
                sys.exit(1)
        print("[init] Database ready")
        return

    try:
        with session_scope(factory) as session:
            if args.cmd == "create-tenant":
                service = TenantService.from_settings(session, settings, identity_admin=_identity_admin(settings))
                view, password = service.create_tenant(args.name, args.description, admin_password=args.admin_password)
                body = view.to_dict()
                body["adminUsername"] = tenant_admin_username(view.name)
                if not args.admin_password:
                    body["adminPassword"] = password
                _print(body)
            elif args.cmd in ("create-participant", "activate", "delete-participant", "operations"):
                orchestrator = ProvisioningOrchestrator.from_settings(
                    session,
                    settings,
                    provisioner=_provisioner(settings),
                    identity_admin=_identity_admin(settings),
                )
                if args.cmd == "create-participant":
                    view = orchestrator.create_participant(
                        scope,
                        args.name,
                        args.username,
                        args.password,
                        tenant_name=args.tenant,
                        company_name=args.company_name,
                        description=args.description,
                    )
                    _print(view.to_dict())
                elif args.cmd == "activate":
                    _print(orchestrator.complete_provisioning(args.id, did=args.did, host=args.host).to_dict())
                elif args.cmd == "delete-participant":
                    _print(orchestrator.delete_participant(scope, args.id).to_dict())
                else:
                    page = orchestrator.list_operations(scope, args.id, args.event_type, args.page, args.limit)
                    _print(page.to_dict())
            elif args.cmd == "request-credentials":
                workflow = CredentialIssuanceWorkflow.from_settings(session, settings, issuer=_issuer(settings))
                views = workflow.request_credentials(
                    scope,
                    args.id,
                    [{"type": credential_type, "format": args.format} for credential_type in args.types],
                )
                _print([view.to_dict() for view in views])
            else:
                parser.print_help()
    except PortalError as e:
        print(f"[{args.cmd}] Error: {e.message}", file=sys.stderr)
        if e.context:
            print(json.dumps(e.context, default=str), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
