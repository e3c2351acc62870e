from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Business',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Legal name (razón social).', max_length=255, unique=True)),
                ('rfc', models.CharField(help_text='Issuer tax id (RFC), 12 or 13 characters.', max_length=13)),
                ('tax_regime', models.CharField(blank=True, help_text="SAT c_RegimenFiscal code, e.g. '601'.", max_length=3)),
                ('postal_code', models.CharField(blank=True, help_text='Expedition postal code (LugarExpedicion).', max_length=5)),
                ('certificate_number', models.CharField(blank=True, help_text='CSD certificate number (NoCertificado).', max_length=20)),
                ('logo', models.FileField(blank=True, upload_to='logos/')),
                ('pac_user', models.CharField(blank=True, max_length=255)),
                ('pac_api_key', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('owner_user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='businesses', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('owner_user',), name='uniq_business_per_owner')],
            },
        ),
        migrations.CreateModel(
            name='Customer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('rfc', models.CharField(max_length=13)),
                ('email', models.EmailField(blank=True, max_length=255, null=True)),
                ('postal_code', models.CharField(blank=True, max_length=5)),
                ('tax_regime', models.CharField(blank=True, max_length=3)),
                ('cfdi_use', models.CharField(default='G03', help_text='Default SAT c_UsoCFDI code for invoices to this customer.', max_length=4)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('business', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='customers', to='core.business')),
            ],
            options={
                'ordering': ['name'],
                'constraints': [models.UniqueConstraint(fields=('business', 'name'), name='uniq_customer_per_business_name')],
            },
        ),
    ]
