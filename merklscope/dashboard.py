"""Incentive dashboard: served at /dashboard next to the JSON API.

/dashboard → HTML page that renders the cached snapshot from
             /api/dashboard-default (pools, WoW and the AI report)
"""
from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import HTMLResponse

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Monad Incentive Efficiency</title>
  <style>
    :root {
      --bg: #0d0d0d;
      --surface: #161616;
      --border: #2a2a2a;
      --accent: #836ef9;
      --muted: #6b7280;
      --text: #e5e7eb;
      --green: #22c55e;
      --red: #ef4444;
      --yellow: #eab308;
    }
    * { box-sizing: border-box; margin: 0; padding: 0; }
    body {
      background: var(--bg);
      color: var(--text);
      font-family: 'JetBrains Mono', 'Fira Code', 'Consolas', monospace;
      font-size: 13px;
      line-height: 1.6;
      padding: 24px;
    }
    header {
      display: flex;
      align-items: baseline;
      gap: 16px;
      margin-bottom: 24px;
      border-bottom: 1px solid var(--border);
      padding-bottom: 12px;
    }
    header h1 { font-size: 18px; color: var(--accent); }
    header .subtitle { color: var(--muted); font-size: 12px; }
    #last-updated { margin-left: auto; color: var(--muted); font-size: 11px; }
    .grid {
      display: grid;
      grid-template-columns: repeat(auto-fill, minmax(180px, 1fr));
      gap: 12px;
      margin-bottom: 24px;
    }
    .card {
      background: var(--surface);
      border: 1px solid var(--border);
      border-radius: 6px;
      padding: 14px 16px;
    }
    .card-label { color: var(--muted); font-size: 11px; text-transform: uppercase; letter-spacing: .05em; }
    .card-value { font-size: 22px; margin-top: 4px; color: var(--accent); }
    section { margin-bottom: 28px; }
    section h2 {
      font-size: 13px;
      color: var(--muted);
      text-transform: uppercase;
      letter-spacing: .08em;
      margin-bottom: 10px;
    }
    table {
      width: 100%;
      border-collapse: collapse;
      background: var(--surface);
      border: 1px solid var(--border);
    }
    th {
      text-align: left;
      padding: 8px 12px;
      font-size: 11px;
      color: var(--muted);
      text-transform: uppercase;
      border-bottom: 1px solid var(--border);
    }
    td { padding: 8px 12px; border-bottom: 1px solid var(--border); white-space: nowrap; }
    td.num { text-align: right; }
    tr:hover td { background: rgba(255,255,255,.02); }
    .up { color: var(--red); }
    .down { color: var(--green); }
    .badge { display: inline-block; padding: 1px 7px; border-radius: 99px; font-size: 11px; font-weight: 600; }
    .badge-high   { background: rgba(239,68,68,.15); color: var(--red); }
    .badge-medium { background: rgba(234,179,8,.15); color: var(--yellow); }
    .badge-low    { background: rgba(107,114,128,.15); color: var(--muted); }
    ul { padding-left: 18px; }
    li { margin-bottom: 6px; }
    .empty { color: var(--muted); font-size: 12px; padding: 16px 12px; }
    a { color: var(--accent); text-decoration: none; }
    #error-banner {
      display: none;
      background: rgba(239,68,68,.1);
      border: 1px solid var(--red);
      border-radius: 6px;
      padding: 10px 14px;
      color: var(--red);
      margin-bottom: 16px;
    }
  </style>
</head>
<body>
<header>
  <h1>Monad Incentive Efficiency</h1>
  <span class="subtitle" id="period">loading...</span>
  <span id="last-updated"></span>
</header>

<div id="error-banner"></div>

<div class="grid">
  <div class="card"><div class="card-label">MON price</div><div class="card-value" id="mon-price">-</div></div>
  <div class="card"><div class="card-label">MON spent</div><div class="card-value" id="mon-spent">-</div></div>
  <div class="card"><div class="card-label">Incentivised pools</div><div class="card-value" id="pool-count">-</div></div>
  <div class="card"><div class="card-label">Avg TVL cost</div><div class="card-value" id="avg-cost">-</div></div>
</div>

<section>
  <h2>Pools</h2>
  <table>
    <thead><tr>
      <th>Protocol</th><th>Funding</th><th>Market</th><th>MON</th><th>USD</th>
      <th>TVL</th><th>APR</th><th>TVL cost</th><th>WoW</th>
    </tr></thead>
    <tbody id="pools"><tr><td colspan="9" class="empty">loading...</td></tr></tbody>
  </table>
</section>

<section>
  <h2>Key findings</h2>
  <ul id="findings"><li class="empty">no AI analysis</li></ul>
</section>

<section>
  <h2>Efficiency issues</h2>
  <table>
    <thead><tr><th>Severity</th><th>Pool</th><th>Issue</th><th>Recommendation</th></tr></thead>
    <tbody id="issues"><tr><td colspan="4" class="empty">no AI analysis</td></tr></tbody>
  </table>
</section>

<section>
  <h2>Recommendations</h2>
  <ul id="recommendations"><li class="empty">no AI analysis</li></ul>
</section>

<script>
  function esc(s) {
    return String(s ?? '').replace(/[&<>"]/g, c => ({'&': '&amp;', '<': '&lt;', '>': '&gt;', '"': '&quot;'}[c]));
  }
  function num(v, digits = 2) {
    return v === null || v === undefined ? '-' : Number(v).toLocaleString(undefined, {maximumFractionDigits: digits});
  }
  function pct(v) { return v === null || v === undefined ? '-' : Number(v).toFixed(2) + '%'; }
  function wow(v) {
    if (v === null || v === undefined) return '-';
    return `<span class="${v > 0 ? 'up' : 'down'}">${v > 0 ? '+' : ''}${Number(v).toFixed(2)}%</span>`;
  }

  function renderPools(pools) {
    const body = document.getElementById('pools');
    if (!pools.length) { body.innerHTML = '<tr><td colspan="9" class="empty">no incentivised pools</td></tr>'; return; }
    body.innerHTML = pools.map(p => `<tr>
      <td>${esc(p.protocol)}</td>
      <td>${esc(p.funding_protocol)}</td>
      <td>${p.merkl_url ? `<a href="${esc(p.merkl_url)}" target="_blank">${esc(p.market_name)}</a>` : esc(p.market_name)}</td>
      <td class="num">${num(p.incentives_mon)}</td>
      <td class="num">${p.incentives_usd ? '$' + num(p.incentives_usd) : '-'}</td>
      <td class="num">${p.tvl ? '$' + num(p.tvl, 0) : '-'}</td>
      <td class="num">${pct(p.apr)}</td>
      <td class="num">${pct(p.tvl_cost)}</td>
      <td class="num" title="${esc(p.driver?.phrase)}">${wow(p.wow_change)}</td>
    </tr>`).join('');
  }

  function renderAnalysis(a) {
    if (!a) return;
    const list = items => items.length ? items.map(i => `<li>${esc(i)}</li>`).join('') : '<li class="empty">none</li>';
    document.getElementById('findings').innerHTML = list(a.key_findings || []);
    document.getElementById('recommendations').innerHTML = list(a.recommendations || []);
    const issues = a.efficiency_issues || [];
    document.getElementById('issues').innerHTML = issues.length
      ? issues.map(i => `<tr>
          <td><span class="badge badge-${esc(i.severity)}">${esc(i.severity)}</span></td>
          <td>${esc(i.pool_id)}</td><td>${esc(i.issue)}</td><td>${esc(i.recommendation)}</td>
        </tr>`).join('')
      : '<tr><td colspan="4" class="empty">none</td></tr>';
  }

  async function load() {
    const banner = document.getElementById('error-banner');
    try {
      const resp = await fetch('/api/dashboard-default');
      const body = await resp.json();
      if (!resp.ok) {
        banner.textContent = body.message || 'Dashboard data unavailable';
        banner.style.display = 'block';
        document.getElementById('pools').innerHTML = '<tr><td colspan="9" class="empty">no snapshot yet</td></tr>';
        return;
      }
      const d = body.data;
      const pools = d.pools || [];
      const costs = pools.map(p => p.tvl_cost).filter(c => c !== null && c !== undefined);
      document.getElementById('period').textContent = `${d.start_date} to ${d.end_date}`;
      document.getElementById('last-updated').textContent = 'refreshed ' + new Date(d.timestamp * 1000).toLocaleString();
      document.getElementById('mon-price').textContent = '$' + num(d.mon_price, 4);
      document.getElementById('mon-spent').textContent = num(pools.reduce((s, p) => s + p.incentives_mon, 0), 0);
      document.getElementById('pool-count').textContent = pools.length;
      document.getElementById('avg-cost').textContent = costs.length ? pct(costs.reduce((s, c) => s + c, 0) / costs.length) : '-';
      renderPools(pools);
      renderAnalysis(d.ai_analysis);
    } catch (err) {
      banner.textContent = 'Failed to load dashboard: ' + err;
      banner.style.display = 'block';
    }
  }

  load();
</script>
</body>
</html>
"""


@router.get("", response_class=HTMLResponse)
async def dashboard() -> HTMLResponse:
    """Serve the dashboard UI."""
    return HTMLResponse(content=_HTML)
