# ------------------------------------------------------------------------------
# UI (inline HTML)
# ------------------------------------------------------------------------------
import html

_STYLE = """
:root{
  --bg:#fff; --text:#111827; --muted:#6b7280; --border:#e5e7eb;
  --accent:#4f46e5; --danger:#dc2626; --chip:#f3f4f6;
}
*{box-sizing:border-box}
html,body{height:100%}
body{
  margin:0;background:var(--bg);color:var(--text);
  font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, "Helvetica Neue", Arial, "Noto Sans";
}
.container{max-width:960px;margin:0 auto;padding:24px}
header{display:flex;align-items:center;justify-content:space-between;margin-bottom:16px}
.brand{font-weight:700;font-size:20px;letter-spacing:.2px}
header .meta{display:flex;align-items:center;gap:8px;color:var(--muted);font-size:14px}
header img{height:28px;width:28px;border-radius:999px}
button, input{
  font:inherit;border:1px solid var(--border);border-radius:10px;padding:8px 12px;background:#fff;color:var(--text)
}
button{cursor:pointer}
button.primary{background:var(--accent);color:#fff;border-color:var(--accent)}
button.danger{background:var(--danger);color:#fff;border-color:var(--danger)}
button.ghost{background:transparent}
button:disabled{opacity:.5}
.row{display:flex;gap:8px;align-items:center;flex-wrap:wrap}
.row input{flex:1 1 240px}
.grid{display:grid;grid-template-columns:repeat(auto-fill,minmax(260px,1fr));gap:12px;margin-top:20px}
.card{border:1px solid var(--border);border-radius:14px;padding:14px;background:#fff;position:relative}
.card h3{font-size:16px;margin:0 0 4px 0;font-weight:600;overflow:hidden;text-overflow:ellipsis;white-space:nowrap}
.card a{color:var(--accent);font-size:13px;text-decoration:none;display:block;overflow:hidden;text-overflow:ellipsis;white-space:nowrap}
.card .aux{font-size:12px;color:var(--muted);margin-top:6px}
.card .del{position:absolute;top:10px;right:10px;font-size:12px;padding:4px 8px}
.empty{text-align:center;color:var(--muted);padding:64px 0}
.banner{display:none;background:#fef3c7;border:1px solid #fde68a;color:#92400e;border-radius:10px;padding:8px 12px;font-size:14px;margin-bottom:12px}
.banner.show{display:block}
.modal{position:fixed;inset:0;background:rgba(0,0,0,.45);display:none;align-items:center;justify-content:center;padding:16px}
.modal.show{display:flex}
.modal .box{background:#fff;border-radius:16px;padding:20px;max-width:360px;width:100%}
.toast{
  position:fixed;left:50%;bottom:24px;transform:translateX(-50%);
  background:#111827;color:#fff;padding:10px 12px;border-radius:10px;font-size:14px;
  opacity:0;pointer-events:none;transition:opacity .2s, transform .2s;
}
.toast.show{opacity:1;transform:translateX(-50%) translateY(-4px)}
.signin{min-height:100%;display:flex;align-items:center;justify-content:center}
.signin .box{border:1px solid var(--border);border-radius:16px;padding:32px;text-align:center;max-width:360px;width:100%}
.signin a.button{display:inline-block;margin-top:16px;padding:12px 20px;border-radius:12px;border:1px solid var(--border);text-decoration:none;color:var(--text)}
"""

SIGNIN_HTML = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<title>__APP_TITLE__</title>
<style>__STYLE__</style>
</head>
<body>
<div class="signin">
  <div class="box">
    <div class="brand">__APP_TITLE__</div>
    <p style="color:var(--muted)">Sign in to access your library</p>
    <a class="button" href="/auth/login">Continue with Google</a>
  </div>
</div>
</body>
</html>
"""

DASHBOARD_HTML = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<title>__APP_TITLE__</title>
<style>__STYLE__</style>
</head>
<body>
<div class="container">
  <header>
    <div class="brand">__APP_TITLE__</div>
    <div class="meta">__USER__ <button id="logout" class="ghost">Sign out</button></div>
  </header>

  <div id="banner" class="banner" role="status">Reconnecting…</div>

  <form id="add" class="row">
    <input id="title" placeholder="Title (e.g. Design Inspiration)" aria-label="Title" required>
    <input id="url" placeholder="Paste URL here…" aria-label="URL" required>
    <button class="primary" type="submit">Save</button>
  </form>

  <div id="list" class="grid" aria-live="polite"></div>
  <div id="empty" class="empty" style="display:none">Your library is empty. Add your first bookmark above.</div>
</div>

<div id="confirm" class="modal" role="dialog" aria-modal="true">
  <div class="box">
    <h3 style="margin-top:0">Delete bookmark?</h3>
    <p style="color:var(--muted);font-size:14px">This action cannot be undone.</p>
    <div class="row" style="justify-content:flex-end">
      <button id="cancel" class="ghost">Cancel</button>
      <button id="really" class="danger">Delete</button>
    </div>
  </div>
</div>

<div id="toast" class="toast" role="status" aria-live="polite"></div>

<script>
(function(){
  const toast = (msg)=>{const el=document.getElementById('toast');el.textContent=msg;el.classList.add('show');setTimeout(()=>el.classList.remove('show'),1600);};
  const esc = (s)=>String(s||'').replace(/[&<>"']/g,c=>({'&':'&amp;','<':'&lt;','>':'&gt;','"':'&quot;',"'":'&#39;'}[c]));

  let records = [];
  let ws = null;
  let backoff = 500;
  let pendingDelete = null;
  let bannerTimer = null;

  function render(){
    const list = document.getElementById('list');
    document.getElementById('empty').style.display = records.length ? 'none' : 'block';
    list.innerHTML = records.map(r => `
      <div class="card">
        <button class="ghost del" data-id="${esc(r.id)}" title="Delete bookmark">✕</button>
        <h3>${esc(r.title)}</h3>
        <a href="${esc(r.url)}" target="_blank" rel="noopener noreferrer">${esc(r.url)}</a>
        <div class="aux">${new Date(r.created_at).toLocaleDateString()}</div>
      </div>`).join('');
    list.querySelectorAll('.del').forEach(b => b.onclick = () => {
      pendingDelete = b.getAttribute('data-id');
      document.getElementById('confirm').classList.add('show');
    });
  }

  // Mirrors the server-side view: every message is already deduplicated there,
  // but merging by id keeps this safe against repeats too.
  function apply(msg){
    if(msg.type === 'SNAPSHOT'){ records = msg.records || []; }
    else if(msg.type === 'INSERT'){ if(!records.some(r=>r.id===msg.record.id)) records = [msg.record, ...records]; }
    else if(msg.type === 'UPDATE'){ records = records.map(r => r.id===msg.record.id ? msg.record : r); }
    else if(msg.type === 'DELETE'){ records = records.filter(r => r.id!==msg.old_record.id); }
    else if(msg.type === 'ERROR'){ toast(msg.detail || 'Something went wrong'); return; }
    render();
  }

  function connect(){
    const proto = location.protocol === 'https:' ? 'wss' : 'ws';
    ws = new WebSocket(`${proto}://${location.host}/api/stream`);
    ws.onopen = ()=>{
      backoff = 500;
      clearTimeout(bannerTimer);
      document.getElementById('banner').classList.remove('show');
    };
    ws.onmessage = (e)=>apply(JSON.parse(e.data));
    ws.onclose = (e)=>{
      if(e.code === 1008){ location.href = '/'; return; }
      bannerTimer = setTimeout(()=>document.getElementById('banner').classList.add('show'), 2000);
      setTimeout(connect, backoff);
      backoff = Math.min(backoff * 2, 15000);
    };
  }

  function send(cmd){
    if(ws && ws.readyState === WebSocket.OPEN){ ws.send(JSON.stringify(cmd)); return true; }
    toast('Offline, try again in a moment');
    return false;
  }

  document.getElementById('add').onsubmit = (e)=>{
    e.preventDefault();
    const title = document.getElementById('title').value.trim();
    const url = document.getElementById('url').value.trim();
    if(!title || !url) return;
    if(send({action:'create', title, url})){
      document.getElementById('title').value = '';
      document.getElementById('url').value = '';
    }
  };
  document.getElementById('cancel').onclick = ()=>{
    pendingDelete = null;
    document.getElementById('confirm').classList.remove('show');
  };
  document.getElementById('really').onclick = ()=>{
    if(pendingDelete) send({action:'delete', id: pendingDelete});
    pendingDelete = null;
    document.getElementById('confirm').classList.remove('show');
  };
  document.getElementById('logout').onclick = async ()=>{
    await fetch('/auth/logout',{method:'POST',credentials:'include'});
    location.href = '/';
  };

  render();
  connect();
})();
</script>
</body>
</html>
"""


def render_signin(app_title: str) -> str:
    return (SIGNIN_HTML
            .replace("__STYLE__", _STYLE)
            .replace("__APP_TITLE__", html.escape(app_title)))


def render_dashboard(app_title: str, name: str, picture: str = "") -> str:
    user = html.escape(name)
    if picture:
        user = f'<img src="{html.escape(picture)}" alt="">' + user
    return (DASHBOARD_HTML
            .replace("__STYLE__", _STYLE)
            .replace("__APP_TITLE__", html.escape(app_title))
            .replace("__USER__", user))
