from django.db import migrations, models
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='LFSObject',
            fields=[
                ('oid', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('size', models.BigIntegerField()),
                ('hash_algo', models.CharField(default='sha256', max_length=16)),
                ('storage_key', models.CharField(max_length=255)),
                ('uploaded', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'lfs_objects',
            },
        ),
        migrations.CreateModel(
            name='AccessPolicy',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('lfs_object_oid', models.CharField(max_length=64, unique=True)),
                ('repository', models.CharField(max_length=255)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'lfs_object_access_policies',
            },
        ),
        migrations.CreateModel(
            name='RepositoryAllowlistEntry',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('repository', models.CharField(max_length=255, unique=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'repository_allowlist',
                'ordering': ['repository'],
            },
        ),
    ]
