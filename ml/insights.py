import pandas as pd
from sklearn.linear_model import LinearRegression

import ledger

# relative monthly slope below which a category counts as stable
TREND_THRESHOLD = 0.05
TARGET_SAVINGS_RATE = 20


def _transactions_df(txs):
    # Build a DataFrame of the given transactions
    data = [{
        'date': tx.date,
        'amount': float(tx.amount),
        'type': (tx.ttype or '').lower(),
        'category': tx.category
    } for tx in txs]
    if not data:
        return pd.DataFrame(columns=['date', 'amount', 'type', 'category'])
    df = pd.DataFrame(data)
    df['date'] = pd.to_datetime(df['date'])
    return df


def _slope(values):
    X = [[i] for i in range(len(values))]
    model = LinearRegression().fit(X, list(values))
    return float(model.coef_[0])


def predict_next_month_expense(txs):
    df = _transactions_df(txs)
    expenses = df[df['type'] == 'expense'].copy()
    if expenses.empty:
        return 0.0
    # Create monthly expense totals
    expenses['ym'] = expenses['date'].dt.to_period('M').astype(str)
    m = expenses.groupby('ym')['amount'].sum().reset_index()
    if len(m) < 2:
        # Not enough data to fit
        return round(float(m['amount'].iloc[-1]), 2)
    m['idx'] = range(1, len(m) + 1)
    model = LinearRegression().fit(m[['idx']].values, m['amount'].values)
    pred = float(model.predict([[m['idx'].max() + 1]])[0])
    return round(max(pred, 0.0), 2)


def category_trends(txs, months=5, today=None):
    """Expense per category for the trailing months, with an up/down/stable label."""
    keys = ledger.trailing_months(months, today)
    df = _transactions_df(txs)
    expenses = df[df['type'] == 'expense'].copy()
    if expenses.empty:
        return []
    expenses['ym'] = expenses['date'].dt.to_period('M').astype(str)
    expenses = expenses[expenses['ym'].isin(keys)]
    if expenses.empty:
        return []
    table = expenses.pivot_table(index='category', columns='ym', values='amount', aggfunc='sum')
    table = table.reindex(columns=keys).fillna(0.0)

    trends = []
    for category, row in table.iterrows():
        values = [round(float(v), 2) for v in row.values]
        mean = sum(values) / len(values)
        slope = _slope(values) if len(values) > 1 else 0.0
        if mean and slope > TREND_THRESHOLD * mean:
            trend = 'up'
        elif mean and slope < -TREND_THRESHOLD * mean:
            trend = 'down'
        else:
            trend = 'stable'
        trends.append({'category': category, 'months': keys, 'data': values, 'trend': trend})
    trends.sort(key=lambda t: -sum(t['data']))
    return trends


def generate_insights(txs, today=None):
    recs = []
    txs = list(txs)
    if not txs:
        recs.append('Add a few transactions to get personalized savings insights.')
        return recs
    summary = ledger.summarize(txs)
    if summary.income > 0:
        rate = float(summary.savings_rate)
        if rate >= TARGET_SAVINGS_RATE:
            recs.append(f'Great savings rate! You are saving {rate:.1f}% of your income, which is above the recommended {TARGET_SAVINGS_RATE}%.')
        else:
            recs.append(f'Your overall savings rate is {rate:.1f}%. Aim for {TARGET_SAVINGS_RATE}%+ as a baseline.')
    else:
        recs.append('Add income entries to compute your savings rate.')

    for trend in category_trends(txs, today=today):
        if trend['trend'] == 'up':
            recs.append(f'{trend["category"]} expenses increasing over the last {len(trend["months"])} months.')
        elif trend['trend'] == 'down':
            recs.append(f'{trend["category"]} spending down over the last {len(trend["months"])} months - good job!')

    monthly = [b.expenses for b in ledger.monthly_trend(txs, months=6, today=today)]
    history = [float(v) for v in monthly[:-1] if v]
    if history and float(monthly[-1]) > 1.2 * (sum(history) / len(history)):
        recs.append("This month's expenses exceed your previous average by 20%+. Review discretionary categories.")

    pred = predict_next_month_expense(txs)
    recs.append(f'Predicted next month expense: {pred:.0f}.')
    return recs
