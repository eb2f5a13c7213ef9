"""Dashboard HTML with inline CSS and vanilla JS."""


def get_dashboard_html() -> str:
    return """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>LLM Manager</title>
<style>
  :root {
    --bg: #0d1117; --surface: #161b22; --border: #30363d;
    --text: #e6edf3; --text-muted: #8b949e; --text-dim: #6e7681;
    --pending: #8b949e; --processing: #58a6ff; --done: #3fb950; --failed: #f85149;
  }
  * { margin: 0; padding: 0; box-sizing: border-box; }
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif;
         background: var(--bg); color: var(--text); line-height: 1.5; }
  .container { max-width: 960px; margin: 0 auto; padding: 24px 16px; }
  header { display: flex; justify-content: space-between; align-items: center;
           padding-bottom: 16px; border-bottom: 1px solid var(--border); margin-bottom: 24px; }
  header h1 { font-size: 20px; font-weight: 600; }
  .backends { font-size: 12px; color: var(--text-muted); }
  .backends code { background: var(--surface); padding: 2px 6px; border-radius: 4px; }
  .backends code.missing { color: var(--text-dim); text-decoration: line-through; }

  .summary { display: flex; gap: 16px; align-items: center; margin-bottom: 24px; flex-wrap: wrap; }
  .stat { display: flex; align-items: center; gap: 6px; font-size: 14px; }
  .stat .dot { width: 10px; height: 10px; border-radius: 50%; display: inline-block; }
  .dot.pending { background: var(--pending); }
  .dot.processing { background: var(--processing); }
  .dot.done { background: var(--done); }
  .dot.failed { background: var(--failed); }
  .progress-bar { flex: 1; min-width: 120px; height: 8px; background: var(--surface);
                  border-radius: 4px; overflow: hidden; border: 1px solid var(--border); }
  .progress-bar .fill { height: 100%; background: var(--done); transition: width 0.3s; }

  .task-list { display: flex; flex-direction: column; gap: 2px; }
  .task-card { background: var(--surface); border: 1px solid var(--border);
               border-radius: 8px; padding: 12px 16px; }
  .task-header { display: flex; align-items: center; gap: 10px; }
  .badge { display: inline-block; padding: 2px 10px; border-radius: 12px; font-size: 11px;
           font-weight: 600; text-transform: uppercase; letter-spacing: 0.5px; }
  .badge.pending { background: rgba(139,148,158,0.15); color: var(--pending); }
  .badge.processing { background: rgba(88,166,255,0.15); color: var(--processing); }
  .badge.done { background: rgba(63,185,80,0.15); color: var(--done); }
  .badge.failed { background: rgba(248,81,73,0.15); color: var(--failed); }
  .task-title { font-size: 14px; }
  .task-id { font-size: 12px; color: var(--text-dim); font-family: monospace; }
  .task-details { margin-top: 6px; font-size: 13px; color: var(--text-muted); }
  .task-details pre { margin-top: 6px; background: var(--bg); padding: 8px; border-radius: 4px;
                      font-size: 12px; white-space: pre-wrap; max-height: 200px; overflow: auto; }
  .empty { text-align: center; padding: 48px; color: var(--text-muted); }
</style>
</head>
<body>
<div class="container">
  <header>
    <h1>LLM Manager</h1>
    <div class="backends" id="backends"></div>
  </header>
  <div id="content"><div class="empty"><h3>Loading...</h3></div></div>
</div>

<script>
async function fetchJSON(path) {
  const res = await fetch(path);
  if (!res.ok) return null;
  return res.json();
}

async function loadBackends() {
  const backends = await fetchJSON('/api/backends');
  if (!backends) return;
  document.getElementById('backends').innerHTML = backends.map(b =>
    `<code class="${b.installed ? '' : 'missing'}" title="${esc(b.role)}">${esc(b.name)}</code>`
  ).join(' ');
}

async function loadDashboard() {
  const content = document.getElementById('content');
  const [tasks, summary] = await Promise.all([
    fetchJSON('/api/tasks'),
    fetchJSON('/api/summary'),
  ]);

  let html = '';
  if (summary) {
    const c = summary.counts;
    html += `<div class="summary">
      <span class="stat"><span class="dot pending"></span> ${c.pending} pending</span>
      <span class="stat"><span class="dot processing"></span> ${c.processing} running</span>
      <span class="stat"><span class="dot done"></span> ${c.done} done</span>
      <span class="stat"><span class="dot failed"></span> ${c.failed} failed</span>
      <div class="progress-bar"><div class="fill" style="width:${summary.progress_pct}%"></div></div>
    </div>`;
  }

  if (!tasks || tasks.length === 0) {
    html += '<div class="empty"><h3>Queue is empty</h3><p>Add tasks with <code>llm-manager add</code></p></div>';
  } else {
    html += '<div class="task-list">' + tasks.map(renderTask).join('') + '</div>';
  }
  content.innerHTML = html;
}

function renderTask(task) {
  let details = '';
  if (task.assigned_backend) {
    details += `<div>Backend: <code>${esc(task.assigned_backend)}</code></div>`;
  }
  if (task.result) {
    details += `<pre>${esc(task.result)}</pre>`;
  }
  return `<div class="task-card">
    <div class="task-header">
      <span class="badge ${task.status}">${esc(task.status)}</span>
      <span class="task-title">${esc(task.description)}</span>
      <span class="task-id">${esc(task.id)}</span>
    </div>
    ${details ? `<div class="task-details">${details}</div>` : ''}
  </div>`;
}

function esc(s) {
  if (!s) return '';
  const d = document.createElement('div');
  d.textContent = s;
  return d.innerHTML;
}

loadBackends();
loadDashboard();
setInterval(loadDashboard, 5000);
</script>
</body>
</html>"""
