from decimal import Decimal

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('core', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Series',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('series', models.CharField(max_length=10)),
                ('document_type', models.CharField(choices=[('I', 'Ingreso (invoice)'), ('P', 'Pago (payment complement)')], default='I', max_length=1)),
                ('last_folio', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('business', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='cfdi_series', to='core.business')),
            ],
            options={
                'ordering': ['business', 'series'],
                'constraints': [models.UniqueConstraint(fields=('business', 'series'), name='uniq_series_per_business')],
            },
        ),
        migrations.CreateModel(
            name='Invoice',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('series', models.CharField(max_length=10)),
                ('folio', models.PositiveIntegerField()),
                ('issue_date', models.DateTimeField(default=django.utils.timezone.now)),
                ('currency', models.CharField(default='MXN', max_length=3)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('stamped', 'Stamped'), ('canceled', 'Canceled')], db_index=True, default='draft', max_length=10)),
                ('fiscal_uuid', models.CharField(blank=True, max_length=36, null=True, unique=True)),
                ('stamped_at', models.DateTimeField(blank=True, null=True)),
                ('stamped_xml', models.TextField(blank=True, default='')),
                ('xml_url', models.CharField(blank=True, default='', max_length=500)),
                ('pdf_url', models.CharField(blank=True, default='', max_length=500)),
                ('canceled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.CharField(blank=True, default='', help_text='SAT cancellation motive code (01-04).', max_length=2)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('cfdi_use', models.CharField(default='G03', max_length=4)),
                ('payment_method', models.CharField(choices=[('PUE', 'Pago en una sola exhibición'), ('PPD', 'Pago en parcialidades o diferido')], default='PUE', max_length=3)),
                ('payment_form', models.CharField(default='99', max_length=2)),
                ('payment_conditions', models.CharField(blank=True, default='', max_length=255)),
                ('exportation', models.CharField(default='01', max_length=2)),
                ('relation_type', models.CharField(blank=True, default='', max_length=2)),
                ('related_uuids', models.JSONField(blank=True, default=list)),
                ('subtotal', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('discount_total', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('tax_total', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('total', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('business', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='cfdi_invoices', to='core.business')),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='cfdi_invoices', to='core.customer')),
            ],
            options={
                'ordering': ['-issue_date', '-id'],
                'constraints': [models.UniqueConstraint(fields=('business', 'series', 'folio'), name='uniq_invoice_folio_per_series')],
            },
        ),
        migrations.CreateModel(
            name='InvoiceItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('position', models.PositiveIntegerField()),
                ('product_key', models.CharField(help_text='SAT c_ClaveProdServ.', max_length=8)),
                ('unit_key', models.CharField(default='E48', help_text='SAT c_ClaveUnidad.', max_length=3)),
                ('description', models.CharField(max_length=1000)),
                ('tax_object', models.CharField(default='02', max_length=2)),
                ('quantity', models.DecimalField(decimal_places=6, max_digits=18)),
                ('unit_price', models.DecimalField(decimal_places=6, max_digits=18)),
                ('discount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('amount', models.DecimalField(decimal_places=2, help_text='quantity x unit_price - discount.', max_digits=14)),
                ('tax_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('invoice', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='cfdi.invoice')),
            ],
            options={
                'ordering': ['invoice', 'position'],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('series', models.CharField(max_length=10)),
                ('folio', models.PositiveIntegerField()),
                ('issue_date', models.DateTimeField(default=django.utils.timezone.now)),
                ('currency', models.CharField(default='MXN', max_length=3)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('stamped', 'Stamped'), ('canceled', 'Canceled')], db_index=True, default='draft', max_length=10)),
                ('fiscal_uuid', models.CharField(blank=True, max_length=36, null=True, unique=True)),
                ('stamped_at', models.DateTimeField(blank=True, null=True)),
                ('stamped_xml', models.TextField(blank=True, default='')),
                ('xml_url', models.CharField(blank=True, default='', max_length=500)),
                ('pdf_url', models.CharField(blank=True, default='', max_length=500)),
                ('canceled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.CharField(blank=True, default='', help_text='SAT cancellation motive code (01-04).', max_length=2)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('payment_date', models.DateTimeField()),
                ('payment_form', models.CharField(max_length=2)),
                ('operation_number', models.CharField(blank=True, default='', max_length=100)),
                ('total_amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('business', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='cfdi_payments', to='core.business')),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='cfdi_payments', to='core.customer')),
            ],
            options={
                'ordering': ['-issue_date', '-id'],
                'constraints': [models.UniqueConstraint(fields=('business', 'series', 'folio'), name='uniq_payment_folio_per_series')],
            },
        ),
        migrations.CreateModel(
            name='PaymentRelatedDocument',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('partiality_number', models.PositiveIntegerField()),
                ('previous_balance', models.DecimalField(decimal_places=2, max_digits=14)),
                ('amount_paid', models.DecimalField(decimal_places=2, max_digits=14)),
                ('outstanding_balance', models.DecimalField(decimal_places=2, max_digits=14)),
                ('invoice', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payment_documents', to='cfdi.invoice')),
                ('payment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='related_documents', to='cfdi.payment')),
            ],
            options={
                'ordering': ['payment', 'id'],
                'constraints': [models.UniqueConstraint(fields=('invoice', 'partiality_number'), name='uniq_partiality_per_invoice')],
            },
        ),
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(choices=[('INVOICE_CREATE', 'Invoice created'), ('INVOICE_STAMP', 'Invoice stamped'), ('INVOICE_CANCEL', 'Invoice canceled'), ('PAYMENT_CREATE', 'Payment created'), ('PAYMENT_STAMP', 'Payment stamped'), ('PAYMENT_CANCEL', 'Payment canceled'), ('SERIES_CREATE', 'Series created')], max_length=32)),
                ('resource_type', models.CharField(max_length=32)),
                ('resource_id', models.CharField(blank=True, default='', max_length=64)),
                ('success', models.BooleanField(default=True)),
                ('message', models.TextField(blank=True, default='')),
                ('details', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('business', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='cfdi_audit_logs', to='core.business')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [models.Index(fields=['business', 'resource_type', 'resource_id'], name='cfdi_audit_resource_idx')],
            },
        ),
    ]
