# Generated manually for clan federation accounts

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    dependencies = [
        ('accounts', '0001_initial'),
        ('groups', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='user',
            name='clan',
            field=models.ForeignKey(blank=True, editable=False, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='users', to='groups.clan'),
        ),
        migrations.AddField(
            model_name='user',
            name='federation',
            field=models.ForeignKey(blank=True, editable=False, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='users', to='groups.federation'),
        ),
        migrations.AddIndex(
            model_name='user',
            index=models.Index(fields=['clan'], name='users_clan_idx'),
        ),
        migrations.AddIndex(
            model_name='user',
            index=models.Index(fields=['federation'], name='users_federation_idx'),
        ),
    ]
