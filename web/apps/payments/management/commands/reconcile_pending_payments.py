import datetime

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.payments.domain import Outcome, TransactionNotFound, UpstreamError
from apps.payments.providers import get_gateway
from apps.payments.repository import DjangoOrderStore
from apps.payments.service import WebhookReconciler


class Command(BaseCommand):
    help = "Reconcile pending orders against the payment gateway by polling transaction status"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=100, help="Max transactions to check")
        parser.add_argument("--minutes", type=int, default=0, help="Only orders created within last N minutes (0=all)")

    def handle(self, *args, **opts):
        store = DjangoOrderStore()
        gateway = get_gateway()
        reconciler = WebhookReconciler(store=store)

        created_after = None
        if opts["minutes"] > 0:
            created_after = timezone.now() - datetime.timedelta(minutes=opts["minutes"])

        checked = 0
        applied = 0
        for txid in store.pending_transactions(limit=opts["max"], created_after=created_after):
            checked += 1
            try:
                st = gateway.get_status(txid)
            except TransactionNotFound:
                # Payment page never opened; nothing to settle yet
                self.stdout.write(f"{txid}: not found at gateway")
                continue
            except UpstreamError as e:
                self.stdout.write(self.style.WARNING(f"{txid}: {e.code} {e.detail or ''}".rstrip()))
                continue

            result = reconciler.apply_status(
                txid, st.transaction_status, st.fraud_status, source="poll", gross_amount=st.gross_amount
            )
            if result.outcome is Outcome.APPLIED:
                applied += 1
                self.stdout.write(self.style.SUCCESS(
                    f"{txid}: {st.transaction_status} -> {result.target_status.value} ({result.updated} orders)"
                ))
            else:
                self.stdout.write(f"{txid}: status={st.transaction_status or 'UNKNOWN'} ({result.reason})")

        self.stdout.write(self.style.SUCCESS(f"Checked {checked}, updated {applied} transactions."))
