from app.tasks.celery_app import celery
from app.tasks import worker_jobs

@celery.task(name="app.tasks.jobs.issue_ticket")
def issue_ticket(receipt_id: str):
    return worker_jobs.issue_ticket(receipt_id)

@celery.task(name="app.tasks.jobs.reconcile_confirmed_receipts")
def reconcile_confirmed_receipts(limit: int = 100):
    return worker_jobs.reconcile_confirmed_receipts(limit=limit)

@celery.task(name="app.tasks.jobs.expire_tickets")
def expire_tickets():
    return worker_jobs.expire_tickets()
