from __future__ import annotations

import argparse
import logging
from datetime import date, time

from convenio.auth_service import grant_role, register_user
from convenio.db import init_db
from convenio.errors import ConvenioError
from convenio.logging_setup import configure_logging
from convenio.models import Role
from convenio.recurrence import RecurrenceRule, RecurrenceType, expand
from convenio.seed import seed_base
from convenio.services import list_clients, list_professionals, list_services
from convenio.timeutil import civil_timezone

logger = logging.getLogger(__name__)


def cmd_init(args: argparse.Namespace) -> None:
    seed_base()
    print("Banco inicializado e seed concluído.")


def cmd_list(args: argparse.Namespace) -> None:
    if args.entity == "services":
        for svc in list_services():
            print(f"{svc['id']} | {svc['name']} | R$ {svc['base_price']:.2f} | {svc['category_name'] or '-'}")
    elif args.entity == "professionals":
        for p in list_professionals():
            print(f"{p['id']} | {p['name']} | {p['category_name'] or '-'}")
    elif args.entity == "clients":
        for c in list_clients():
            print(f"{c['id']} | {c['name']} | {c['cpf']} | {c['subscription_status']}")


def cmd_add_user(args: argparse.Namespace) -> None:
    roles = [Role(r) for r in args.role] if args.role else None
    uid = register_user(args.name, args.cpf, args.password, args.email, args.phone, roles=roles)
    print(f"Usuário criado: {uid}")


def cmd_grant_role(args: argparse.Namespace) -> None:
    roles = grant_role(args.user_id, args.role)
    print(f"Perfis do usuário {args.user_id}: {', '.join(roles)}")


def cmd_expand(args: argparse.Namespace) -> None:
    """Prévia das datas de uma recorrência, sem gravar nada."""
    rule = RecurrenceRule(
        start_date=date.fromisoformat(args.start_date),
        start_time=time.fromisoformat(args.start_time),
        recurrence_type=RecurrenceType(args.type),
        interval=args.interval,
        end_date=date.fromisoformat(args.end_date) if args.end_date else None,
        occurrences=args.occurrences,
    )
    tz = civil_timezone(args.offset)
    for i, when in enumerate(expand(rule, utc_offset_hours=args.offset), start=1):
        print(f"{i:3d} | {when.astimezone(tz).strftime('%d/%m/%Y %H:%M')} | {when.isoformat()}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="convenio", description="CLI Cartão Convênio (manutenção e prévias)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Cria o banco e carrega o seed")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="Lista entidades")
    p_list.add_argument("entity", choices=["services", "professionals", "clients"])
    p_list.set_defaults(func=cmd_list)

    p_user = sub.add_parser("add-user", help="Cria usuário")
    p_user.add_argument("--name", required=True)
    p_user.add_argument("--cpf", required=True)
    p_user.add_argument("--password", required=True)
    p_user.add_argument("--email", default=None)
    p_user.add_argument("--phone", default=None)
    p_user.add_argument("--role", action="append", choices=[r.value for r in Role],
                        help="Pode ser repetido; padrão: client")
    p_user.set_defaults(func=cmd_add_user)

    p_grant = sub.add_parser("grant-role", help="Adiciona um perfil ao usuário")
    p_grant.add_argument("--user-id", type=int, required=True)
    p_grant.add_argument("--role", required=True, choices=[r.value for r in Role])
    p_grant.set_defaults(func=cmd_grant_role)

    p_exp = sub.add_parser("expand", help="Mostra as datas geradas por uma recorrência")
    p_exp.add_argument("--start-date", required=True, help="ex: 2024-01-31")
    p_exp.add_argument("--start-time", required=True, help="ex: 09:00")
    p_exp.add_argument("--type", required=True, choices=[t.value for t in RecurrenceType])
    p_exp.add_argument("--interval", type=int, default=1)
    p_exp.add_argument("--end-date", default=None)
    p_exp.add_argument("--occurrences", type=int, default=None)
    p_exp.add_argument("--offset", type=int, default=-3, help="Offset UTC do horário civil")
    p_exp.set_defaults(func=cmd_expand)

    return p


def main() -> None:
    configure_logging()
    parser = build_parser()
    args = parser.parse_args()
    init_db()  # garante as tabelas
    try:
        args.func(args)
    except ConvenioError as e:
        logger.debug("Falha no comando: %s", e.kind)
        raise SystemExit(f"Erro: {e.message}") from e


if __name__ == "__main__":
    main()
