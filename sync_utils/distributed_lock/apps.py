from django.apps import AppConfig


class DistributedLockConfig(AppConfig):
    name = 'sync_utils.distributed_lock'
    label = 'distributed_lock'
    default_auto_field = 'django.db.models.AutoField'
