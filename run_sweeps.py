"""
Запустить автопродление и сброс оплат вручную (без веб-сервера)
"""
import logging

from subtracker.config import get_settings
from subtracker.container import build_container
from subtracker.utils.money import format_money

settings = get_settings()
logging.basicConfig(level=settings.LOG_LEVEL)

container = build_container(settings)

try:
    result = container.store.load()
    print(f"✓ Продлено: {len(result.renewed)}, сброшено оплат: {len(result.reset)}")

    summary = container.store.summary()
    print(f"✓ Активных подписок: {summary.active_count}")
    print(f"  В месяц: {format_money(summary.total_monthly, settings.CURRENCY, decimals=2)}")
    print(f"  Не оплачено в этом месяце: "
          f"{format_money(summary.total_current_month_unpaid, settings.CURRENCY, decimals=2)}")

except Exception as e:
    print(f"✗ ОШИБКА: {e}")
    import traceback
    traceback.print_exc()
