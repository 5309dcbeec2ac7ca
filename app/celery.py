import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'app.settings')

app = Celery('clinic_billing')

# Broker and result backend come from the CELERY_* Django settings.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django app configs.
app.autodiscover_tasks()

app.conf.update(
    task_track_started=True,
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'billing.tasks.*': {'queue': 'billing'},
    },

    # Periodic tasks
    beat_schedule={
        'expire-trials': {
            'task': 'billing.tasks.expire_trials',
            'schedule': 86400.0,  # Run daily
        },
        'process-period-end-cancellations': {
            'task': 'billing.tasks.process_period_end_cancellations',
            'schedule': 3600.0,  # Run hourly
        },
        'send-trial-reminders': {
            'task': 'billing.tasks.send_trial_reminders',
            'schedule': 86400.0,  # Run daily
        },
        'reprocess-failed-nfse': {
            'task': 'billing.tasks.reprocess_failed_nfse',
            'schedule': 21600.0,  # Run every 6 hours
        },
    },
)
