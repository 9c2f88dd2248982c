"""HTML templates for the admin screens. Placeholders are `__NAME__` tokens."""
import html
import json

ENTITY_FIELDS = {
    'faculties': {'title': 'Faculties', 'blurb': 'Manage academic faculties', 'fields': [
        {'name': 'name', 'label': 'Name'},
    ]},
    'labs': {'title': 'Labs', 'blurb': 'Manage lab facilities', 'fields': [
        {'name': 'code', 'label': 'Code'},
        {'name': 'capacity', 'label': 'Capacity', 'type': 'number'},
        {'name': 'location', 'label': 'Location'},
    ]},
    'books': {'title': 'Books', 'blurb': 'Manage textbooks', 'fields': [
        {'name': 'title', 'label': 'Title'},
        {'name': 'author', 'label': 'Author'},
        {'name': 'isbn', 'label': 'ISBN'},
        {'name': 'edition', 'label': 'Edition'},
    ]},
    'batches': {'title': 'Batches', 'blurb': 'Manage student batches', 'fields': [
        {'name': 'code', 'label': 'Batch Code'},
        {'name': 'faculty', 'label': 'Faculty', 'ref': 'faculties', 'show': 'name'},
        {'name': 'currentSemester', 'label': 'Current Semester'},
        {'name': 'currentBook', 'label': 'Current Book', 'ref': 'books', 'show': 'title'},
        {'name': 'upcomingBook', 'label': 'Upcoming Book', 'ref': 'books', 'show': 'title'},
        {'name': 'numberOfStudents', 'label': 'Students', 'type': 'number'},
    ]},
    'timeslots': {'title': 'Time Slots', 'blurb': 'Manage daily time slots', 'fields': [
        {'name': 'label', 'label': 'Label'},
        {'name': 'startTime', 'label': 'Start Time'},
        {'name': 'endTime', 'label': 'End Time'},
        {'name': 'orderIndex', 'label': 'Order', 'type': 'number'},
    ]},
}

STYLE = r'''<style>
*{margin:0;padding:0;box-sizing:border-box}
body{font-family:'Segoe UI',sans-serif;background:#f1f3f9;min-height:100vh}
nav{background:#2f5bd3;padding:12px 20px;display:flex;gap:16px;align-items:center}
nav a{color:white;text-decoration:none;font-weight:600}nav a.brand{font-size:1.2em;margin-right:auto}
.container{padding:24px}
h1{color:#2f5bd3;margin-bottom:14px}
.err-msg{background:#f8d7da;color:#721c24;padding:10px;border-radius:7px;margin-bottom:12px;display:none}
.ok-msg{background:#d4edda;color:#155724;padding:10px;border-radius:7px;margin-bottom:12px;display:none}
table{border-collapse:collapse;background:white}
th,td{border:1px solid #ddd;padding:6px 8px;font-size:.85em;vertical-align:top}
th{background:#2f5bd3;color:white}
.sub th{background:#4a74e0}
.lab-col{position:sticky;left:0;background:#f8f9fa;min-width:140px}
.cell{min-width:110px;cursor:pointer}.cell:hover{background:#eef3ff}.cell.over{background:#d6e2ff;outline:2px solid #2f5bd3}
.empty{color:#bbb;text-align:center;font-size:1.4em}
.alloc{background:#d4edda;border:1px solid #7bc48f;border-radius:6px;padding:5px;cursor:grab}
.alloc b{cursor:pointer}.alloc b:hover{text-decoration:underline}
.btn{padding:6px 12px;border:none;border-radius:6px;background:#2f5bd3;color:white;font-weight:600;cursor:pointer}
.btn.red{background:#dc3545}.btn.grey{background:#888}.btn:disabled{background:#ccc}
.modal{position:fixed;inset:0;background:rgba(0,0,0,.45);display:none;align-items:center;justify-content:center}
.modal.show{display:flex}
.modal-box{background:white;border-radius:12px;padding:22px;min-width:360px;max-width:520px}
.form-group{margin-bottom:10px}.form-group label{display:block;font-weight:600;font-size:.85em;margin-bottom:3px}
.form-group input,.form-group select{width:100%;padding:7px;border:1px solid #ccc;border-radius:6px}
.cards{display:grid;grid-template-columns:repeat(auto-fit,minmax(200px,1fr));gap:14px}
.card{background:white;border-radius:12px;padding:20px;text-decoration:none;color:#2f5bd3;box-shadow:0 2px 8px rgba(0,0,0,.08)}
.card h2{margin-bottom:6px}.card p{color:#666}
#summary{margin-top:18px}
</style>'''

NAV = '''<nav><a class="brand" href="/">Lab Status Express</a><a href="/schedule">Schedule</a>
<a href="/faculties">Faculties</a><a href="/labs">Labs</a><a href="/books">Books</a>
<a href="/batches">Batches</a><a href="/timeslots">Time Slots</a></nav>'''

COMMON_JS = r'''<script>
async function api(path,method='GET',body=null){
  const opt={method,headers:{'Content-Type':'application/json'}};
  if(body!==null)opt.body=JSON.stringify(body);
  const r=await fetch(path,opt);return r.json();
}
function esc(s){return String(s??'').replace(/[&<>"']/g,c=>({'&':'&amp;','<':'&lt;','>':'&gt;','"':'&quot;',"'":'&#39;'}[c]))}
function rid(x){return x&&typeof x==='object'?(x._id||x.id):x}
function showMsg(id,msg){const el=document.getElementById(id);el.textContent=msg||'';el.style.display=msg?'block':'none'}
</script>'''

HOME_PAGE = r'''<!DOCTYPE html>
<html><head><meta charset="UTF-8"><title>Lab Status Express</title>__STYLE__</head>
<body>__NAV__
<div class="container">
<h1>Lab Status Express</h1>
<p style="margin-bottom:20px">Manage your lab schedules, allocations, and resources efficiently</p>
<div class="err-msg" id="err" style="display:__ERR_DISPLAY__">__ERROR__</div>
<div class="cards">__CARDS__</div>
</div></body></html>'''

SCHEDULE_PAGE = r'''<!DOCTYPE html>
<html><head><meta charset="UTF-8"><title>Lab Schedule</title>__STYLE__</head>
<body>__NAV__
<div class="container">
<h1>Lab Schedule</h1>
<p style="margin-bottom:12px;color:#555">Drag and drop allocations to move or swap between cells</p>
<div class="err-msg" id="err"></div>
<div id="grid">Loading schedule...</div>
<div id="summary"></div>
</div>

<div class="modal" id="allocModal"><div class="modal-box">
  <h2 style="margin-bottom:10px">Manage Allocation</h2>
  <p id="allocWhere" style="margin-bottom:10px;color:#555"></p>
  <div class="err-msg" id="allocErr"></div>
  <div id="allocBody"></div>
</div></div>

<div class="modal" id="batchModal"><div class="modal-box">
  <h2 id="batchTitle" style="margin-bottom:10px">Edit Batch</h2>
  <div class="err-msg" id="batchErr"></div>
  <div class="ok-msg" id="batchOk"></div>
  <form id="batchForm" onsubmit="submitBatch(event)"></form>
</div></div>
__COMMON_JS__
<script>
let state=null, dragReq=null;

async function loadSchedule(reload=false){
  const d=await api('/api/schedule'+(reload?'?reload=1':''));
  if(!d.success){showMsg('err',d.message);document.getElementById('grid').textContent='';return}
  showMsg('err','');state=d;render();
}
function render(){
  const slots=state.timeSlots, pats=state.dayPatterns;
  let h='<table><thead><tr><th class="lab-col">Lab / Capacity</th>';
  slots.forEach(s=>h+=`<th colspan="${pats.length}">${esc(s.label)}</th>`);
  h+='</tr><tr class="sub"><th class="lab-col"></th>';
  slots.forEach(()=>pats.forEach(p=>h+=`<th>${p}</th>`));
  h+='</tr></thead><tbody>';
  state.rows.forEach(row=>{
    const lab=row.lab;
    h+=`<tr><td class="lab-col"><b>${esc(lab.code)}</b><br><small>Cap: ${esc(lab.capacity)}</small>${lab.location?'<br><small>'+esc(lab.location)+'</small>':''}</td>`;
    row.cells.forEach(c=>{
      h+=`<td class="cell" ondragover="event.preventDefault()" ondragenter="this.classList.add('over')" ondragleave="if(event.target===this)this.classList.remove('over')"
        ondrop="dropOn(event,this,'${esc(c.labId)}','${esc(c.timeSlotId)}','${c.dayPattern}')"
        onclick="openCell('${esc(c.labId)}','${esc(c.timeSlotId)}','${c.dayPattern}')">${c.allocation?allocHtml(c.allocation):'<div class="empty">+</div>'}</td>`;
    });
    h+='</tr>';
  });
  document.getElementById('grid').innerHTML=h+'</tbody></table>';
  renderSummary(state.summary);
}
function allocHtml(a){
  const b=a.batch||{}, id=esc(rid(a));
  let h=`<div class="alloc" draggable="true" ondragstart="dragStart(event,'${id}')" ondragend="dragEnd()" onclick="event.stopPropagation()">`;
  h+=`<b onclick="editBatch('${id}')">${esc(b.code)}</b>`;
  if(b.faculty&&b.faculty.name)h+=`<br><small>Faculty: ${esc(b.faculty.name)}</small>`;
  if(b.currentSemester)h+=`<br><small>Sem: ${esc(b.currentSemester)}</small>`;
  if(b.currentBook&&b.currentBook.title)h+=`<br><small>Book: ${esc(b.currentBook.title)}</small>`;
  if(b.upcomingBook&&b.upcomingBook.title)h+=`<br><small>Next: ${esc(b.upcomingBook.title)}</small>`;
  if(b.numberOfStudents>0)h+=`<br><small>Students: ${esc(b.numberOfStudents)}</small>`;
  h+=`<div style="margin-top:4px;display:flex;gap:4px"><button class="btn" onclick="editBatch('${id}')">Edit</button><button class="btn red" onclick="removeAlloc('${id}')">Remove</button></div></div>`;
  return h;
}
function renderSummary(s){
  const el=document.getElementById('summary');
  if(!s){el.innerHTML='';return}
  let h=`<h2 style="margin-bottom:8px">Faculty availability</h2><table><tr><th>Time slot</th><th>Free</th><th>Partially free</th><th>Busy</th></tr>`;
  s.slots.forEach(r=>{const t=r.timeSlot||{};h+=`<tr><td>${esc(t.label||rid(t))}</td><td>${r.stats.completelFree}</td><td>${r.stats.partiallyFree}</td><td>${r.stats.busy}</td></tr>`});
  el.innerHTML=h+`<tr><th>Total</th><th>${s.totals.completelFree}</th><th>${s.totals.partiallyFree}</th><th>${s.totals.busy}</th></tr></table>`;
}

// ── Drag and drop ──
function dragStart(ev,id){ev.stopPropagation();ev.dataTransfer.effectAllowed='move';dragReq=api('/api/schedule/drag-start','POST',{allocationId:id})}
// a drop clears dragReq first, so only drags released outside the grid get here
async function dragEnd(){
  if(!dragReq)return;
  const req=dragReq;dragReq=null;await req;
  await api('/api/schedule/drag-cancel','POST',{});
}
async function dropOn(ev,td,labId,timeSlotId,dayPattern){
  ev.preventDefault();ev.stopPropagation();td.classList.remove('over');
  if(!dragReq)return;
  const req=dragReq;dragReq=null;await req;
  const d=await api('/api/schedule/drop','POST',{labId,timeSlotId,dayPattern});
  if(!d.success){alert('Failed to move allocation: '+d.message);return}
  state=d;render();
}

// ── Allocation dialog ──
async function openCell(labId,timeSlotId,dayPattern){
  const d=await api('/api/schedule/cell','POST',{labId,timeSlotId,dayPattern});
  if(!d.success){showMsg('err',d.message);return}
  showAllocDialog(d.dialog);
}
function showAllocDialog(dlg){
  document.getElementById('allocWhere').textContent=`${dlg.lab.code} · ${dlg.timeSlot.label} · ${dlg.dayPattern}`;
  showMsg('allocErr',dlg.error);
  let h='';
  if(!dlg.existing){
    h='<div class="form-group"><label>Select Batch</label><select id="batchPick"><option value="">-- choose --</option>';
    dlg.batches.forEach(b=>h+=`<option value="${esc(b.id)}" ${b.id===dlg.selectedBatch?'selected':''}>${esc(b.label)}</option>`);
    h+='</select></div><button class="btn" onclick="assignBatch()">Assign Batch</button> <button class="btn grey" onclick="closeDialog(\'allocModal\')">Cancel</button>';
  }else{
    const b=dlg.existing.batch||{};
    h=`<p><b>${esc(b.code)}</b>${b.faculty&&b.faculty.name?' · '+esc(b.faculty.name):''}${b.numberOfStudents?' · '+esc(b.numberOfStudents)+' students':''}</p><br>`;
    h+='<button class="btn red" onclick="unassign()">Remove Allocation</button> <button class="btn grey" onclick="closeDialog(\'allocModal\')">Close</button>';
  }
  document.getElementById('allocBody').innerHTML=h;
  document.getElementById('allocModal').classList.add('show');
}
async function assignBatch(){
  const d=await api('/api/schedule/assign','POST',{batchId:document.getElementById('batchPick').value});
  if(!d.success){if(d.dialog)showAllocDialog(d.dialog);else showMsg('allocErr',d.message);return}
  closeDialog('allocModal');state=d;render();
}
async function unassign(){
  const d=await api('/api/schedule/unassign','POST',{});
  if(!d.success){showMsg('allocErr',d.message);return}
  closeDialog('allocModal');state=d;render();
}
async function removeAlloc(id){
  if(!confirm('Remove this allocation?'))return;
  const d=await api('/api/schedule/allocations/'+encodeURIComponent(id),'DELETE');
  if(!d.success){alert('Failed to remove allocation: '+d.message);return}
  state=d;render();
}
function closeDialog(id){document.getElementById(id).classList.remove('show');api('/api/schedule/dialog/close','POST',{})}

// ── Batch edit dialog ──
async function editBatch(id){
  const d=await api('/api/schedule/batch-edit','POST',{allocationId:id});
  if(!d.success){showMsg('err',d.message);return}
  showBatchDialog(d.dialog);
}
function options(items,show,selected){
  let h='<option value="">-- none --</option>';
  items.forEach(i=>h+=`<option value="${esc(i.id)}" ${i.id===selected?'selected':''}>${esc(i[show])}</option>`);
  return h;
}
function showBatchDialog(dlg){
  const f=dlg.form;
  document.getElementById('batchTitle').textContent='Edit Batch: '+f.code;
  showMsg('batchErr',dlg.error);showMsg('batchOk',dlg.success);
  document.getElementById('batchForm').innerHTML=
    `<div class="form-group"><label>Batch Code</label><input name="code" value="${esc(f.code)}"></div>`+
    `<div class="form-group"><label>Faculty</label><select name="faculty">${options(dlg.faculties,'name',f.faculty)}</select></div>`+
    `<div class="form-group"><label>Current Semester</label><input name="currentSemester" value="${esc(f.currentSemester)}"></div>`+
    `<div class="form-group"><label>Current Book</label><select name="currentBook">${options(dlg.books,'title',f.currentBook)}</select></div>`+
    `<div class="form-group"><label>Upcoming Book</label><select name="upcomingBook">${options(dlg.books,'title',f.upcomingBook)}</select></div>`+
    `<div class="form-group"><label>Number of Students</label><input type="number" min="0" name="numberOfStudents" value="${esc(f.numberOfStudents)}"></div>`+
    `<button class="btn" type="submit">Update Batch</button> <button class="btn grey" type="button" onclick="closeDialog('batchModal')">Cancel</button>`;
  document.getElementById('batchModal').classList.add('show');
}
async function submitBatch(ev){
  ev.preventDefault();
  const form=Object.fromEntries(new FormData(document.getElementById('batchForm')).entries());
  const d=await api('/api/schedule/batch-edit/submit','POST',form);
  if(!d.success){if(d.dialog)showBatchDialog(d.dialog);else showMsg('batchErr',d.message);return}
  showMsg('batchOk',d.dialog.success);state=d;render();
  setTimeout(()=>closeDialog('batchModal'),1000);
}

// ── Push updates ──
function startSSE(){
  const src=new EventSource('/api/notify-stream');
  src.onmessage=e=>{
    const m=JSON.parse(e.data);
    if(m.type==='summary'&&state){state.summary=m.data;renderSummary(m.data)}
    if(m.type==='summary-error')console.warn('summary refresh failed',m.data.message);
    if(m.type==='reference'&&['labs','timeSlots','all'].includes(m.data.key))loadSchedule();
  };
}
loadSchedule(true);startSSE();
</script>
</body></html>'''

ENTITY_PAGE = r'''<!DOCTYPE html>
<html><head><meta charset="UTF-8"><title>__TITLE__</title>__STYLE__</head>
<body>__NAV__
<div class="container">
<h1>__TITLE__</h1>
<div class="err-msg" id="err"></div>
<div class="ok-msg" id="ok"></div>
<p style="margin-bottom:12px"><button class="btn" onclick="openForm(null)">+ Create</button> <button class="btn grey" onclick="refresh()">Refresh</button></p>
<div id="list">Loading...</div>
</div>
<div class="modal" id="formModal"><div class="modal-box">
  <h2 id="formTitle" style="margin-bottom:10px"></h2>
  <div class="err-msg" id="formErr"></div>
  <form id="entityForm" onsubmit="save(event)"></form>
</div></div>
__COMMON_JS__
<script>
const ENTITY='__ENTITY__', FIELDS=__FIELDS__;
let items=[], ref={}, editing=null;

async function load(){
  const d=await api('/api/reference');
  if(!d.success){showMsg('err',d.message);return}
  ref=d;showMsg('err',d.error);
  items=d[ENTITY==='timeslots'?'timeSlots':ENTITY]||[];
  render();
}
async function refresh(){
  const d=await api('/api/reference/refresh','POST',{entity:ENTITY});
  if(!d.success){showMsg('err','Failed to refresh: '+d.message);return}
  load();
}
function show(item,f){
  const v=item[f.name];
  if(f.ref)return v&&typeof v==='object'?v[f.show]:((ref[f.ref]||[]).find(x=>rid(x)===v)||{})[f.show];
  return v;
}
function render(){
  if(!items.length){document.getElementById('list').textContent='Nothing here yet.';return}
  let h='<table><tr>'+FIELDS.map(f=>`<th>${esc(f.label)}</th>`).join('')+'<th></th></tr>';
  items.forEach(it=>{
    h+='<tr>'+FIELDS.map(f=>`<td>${esc(show(it,f))}</td>`).join('');
    h+=`<td><button class="btn" onclick="openForm('${esc(rid(it))}')">Edit</button> <button class="btn red" onclick="del('${esc(rid(it))}')">Delete</button></td></tr>`;
  });
  document.getElementById('list').innerHTML=h+'</table>';
}
function openForm(id){
  editing=id;const it=id?items.find(x=>rid(x)===id):{};
  document.getElementById('formTitle').textContent=(id?'Edit ':'Create ')+'__SINGULAR__';
  showMsg('formErr','');
  let h='';
  FIELDS.forEach(f=>{
    const v=it[f.name];
    if(f.ref){
      h+=`<div class="form-group"><label>${esc(f.label)}</label><select name="${f.name}"><option value="">-- none --</option>`;
      (ref[f.ref]||[]).forEach(o=>h+=`<option value="${esc(rid(o))}" ${rid(o)===rid(v)?'selected':''}>${esc(o[f.show])}</option>`);
      h+='</select></div>';
    }else{
      h+=`<div class="form-group"><label>${esc(f.label)}</label><input name="${f.name}" type="${f.type||'text'}" value="${esc(v)}"></div>`;
    }
  });
  h+='<button class="btn" type="submit">Save</button> <button class="btn grey" type="button" onclick="closeForm()">Cancel</button>';
  document.getElementById('entityForm').innerHTML=h;
  document.getElementById('formModal').classList.add('show');
}
function closeForm(){document.getElementById('formModal').classList.remove('show')}
async function save(ev){
  ev.preventDefault();
  const raw=Object.fromEntries(new FormData(document.getElementById('entityForm')).entries()), data={};
  FIELDS.forEach(f=>{
    const v=raw[f.name];
    if(f.ref){if(v)data[f.name]=v;return}
    data[f.name]=f.type==='number'?(v===''?0:parseInt(v)):v;
  });
  const d=editing?await api(`/api/${ENTITY}/${encodeURIComponent(editing)}`,'PUT',data):await api(`/api/${ENTITY}`,'POST',data);
  if(!d.success){showMsg('formErr',d.message);return}
  closeForm();showMsg('ok',editing?'Updated successfully':'Created successfully');load();
}
async function del(id){
  if(!confirm('Delete this item?'))return;
  const d=await api(`/api/${ENTITY}/${encodeURIComponent(id)}`,'DELETE');
  if(!d.success){showMsg('err','Failed to delete: '+d.message);return}
  load();
}
load();
</script>
</body></html>'''


def _fill(page, **tokens):
    page = page.replace('__STYLE__', STYLE).replace('__NAV__', NAV).replace('__COMMON_JS__', COMMON_JS)
    for name, value in tokens.items():
        page = page.replace(f'__{name}__', value)
    return page


def render_home(snapshot):
    counts = {'faculties': 'faculties', 'labs': 'labs', 'books': 'books',
              'batches': 'batches', 'timeslots': 'timeSlots'}
    cards = ''.join(
        f'<a class="card" href="/{entity}"><h2>{html.escape(meta["title"])}</h2>'
        f'<p>{html.escape(meta["blurb"])}</p><p>{len(snapshot.get(counts[entity]) or [])} on record</p></a>'
        for entity, meta in ENTITY_FIELDS.items()
    )
    cards = ('<a class="card" href="/schedule"><h2>Schedule</h2><p>Assign batches to lab slots</p></a>'
             + cards)
    error = snapshot.get('error')
    return _fill(HOME_PAGE, CARDS=cards, ERROR=html.escape(error or ''),
                 ERR_DISPLAY='block' if error else 'none')


def render_schedule():
    return _fill(SCHEDULE_PAGE)


def render_entity(entity):
    meta = ENTITY_FIELDS[entity]
    singular = meta['title'][:-1] if not meta['title'].endswith('ies') else meta['title'][:-3] + 'y'
    if entity == 'batches':
        singular = 'Batch'
    return _fill(ENTITY_PAGE, TITLE=html.escape(meta['title']), ENTITY=entity,
                 SINGULAR=html.escape(singular), FIELDS=json.dumps(meta['fields']))
