# Generated manually for clan federation groups

import uuid
from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


ROLE_CHOICES = [('leader', 'Leader'), ('officer', 'Officer'), ('member', 'Member')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Federation',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=100)),
                ('tag', models.CharField(max_length=10)),
                ('description', models.TextField(blank=True)),
                ('version', models.PositiveIntegerField(default=1, editable=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('leader', models.ForeignKey(blank=True, editable=False, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='led_federations', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'federations',
                'ordering': ['created_at'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='Clan',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=100)),
                ('tag', models.CharField(max_length=10)),
                ('description', models.TextField(blank=True)),
                ('version', models.PositiveIntegerField(default=1, editable=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('leader', models.ForeignKey(blank=True, editable=False, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='led_clans', to=settings.AUTH_USER_MODEL)),
                ('federation', models.ForeignKey(blank=True, editable=False, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='clans', to='groups.federation')),
            ],
            options={
                'db_table': 'clans',
                'ordering': ['created_at'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='FederationMembership',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('role', models.CharField(choices=ROLE_CHOICES, default='member', max_length=10)),
                ('joined_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('federation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to='groups.federation')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='federation_memberships', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'federation_memberships',
                'ordering': ['joined_at', 'id'],
                'abstract': False,
                'unique_together': {('user', 'federation')},
            },
        ),
        migrations.CreateModel(
            name='ClanMembership',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('role', models.CharField(choices=ROLE_CHOICES, default='member', max_length=10)),
                ('joined_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('clan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to='groups.clan')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='clan_memberships', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'clan_memberships',
                'ordering': ['joined_at', 'id'],
                'abstract': False,
                'unique_together': {('user', 'clan')},
            },
        ),
        migrations.AddConstraint(
            model_name='federation',
            constraint=models.UniqueConstraint(fields=('tag',), name='unique_federation_tag'),
        ),
        migrations.AddIndex(
            model_name='federation',
            index=models.Index(fields=['leader'], name='federations_leader_idx'),
        ),
        migrations.AddConstraint(
            model_name='clan',
            constraint=models.UniqueConstraint(fields=('tag',), name='unique_clan_tag'),
        ),
        migrations.AddIndex(
            model_name='clan',
            index=models.Index(fields=['leader'], name='clans_leader_idx'),
        ),
        migrations.AddIndex(
            model_name='clan',
            index=models.Index(fields=['federation'], name='clans_federation_idx'),
        ),
        migrations.AddIndex(
            model_name='clanmembership',
            index=models.Index(fields=['clan', 'role'], name='clan_memberships_role_idx'),
        ),
        migrations.AddIndex(
            model_name='federationmembership',
            index=models.Index(fields=['federation', 'role'], name='fed_memberships_role_idx'),
        ),
    ]
